from fvmgen.macros.glue import lower_program
from fvmgen.macros.hooks import expand_file
from fvmgen.macros.visualize import build_glue_graph, export_glue_graph


SOURCE = """
#[fvm_state]
pub struct State { pub value: u64 }

#[fvm_actor]
impl State {
    #[fvm_export(binding = 1)]
    pub fn add(&mut self, value: u64) { self.value += value }
}
"""


def _module():
    return lower_program(expand_file(SOURCE).program)


def test_graph_structure():
    graph = build_glue_graph(_module())
    names = {sub.get_name() for sub in graph.get_subgraphs()}
    assert names == {"cluster_State_load", "cluster_State_save", "cluster_case0"}

    dot = graph.to_string()
    assert "dispatch" in dot
    assert "case0_g0" in dot
    assert "abort_20" in dot
    assert "abort_21" in dot
    assert "abort_22" in dot


def test_export_dot(tmp_path, capsys):
    path = export_glue_graph(_module(), tmp_path / "glue.dot")
    assert path.read_text().startswith("digraph")
    assert "Glue graph exported" in capsys.readouterr().out
