"""Graphviz export of lowered glue modules."""
from __future__ import annotations

from pathlib import Path

import pydot

from .glue import GlueBlock, GlueModule

OP_COLORS = {
    "GET_ROOT": "#AED6F1",
    "GET_BLOCK": "#AED6F1",
    "PUT_BLOCK": "#AED6F1",
    "SET_ROOT": "#AED6F1",
    "FETCH_PARAMS": "#AED6F1",
    "DECODE_STATE": "#F9E79F",
    "ENCODE_STATE": "#F9E79F",
    "DECODE_ARGS": "#F9E79F",
    "ENCODE_RESULT": "#F9E79F",
    "LOAD_STATE": "#A9DFBF",
    "SAVE_STATE": "#A9DFBF",
    "CALL": "#F5B7B1",
    "RETURN": "#D5D8DC",
}


def _node_id(prefix, instr):
    return f"{prefix}_{instr.id}"


def _block_cluster(graph, block: GlueBlock, prefix, label, abort_nodes):
    cluster = pydot.Cluster(
        prefix,
        label=label,
        color="#7f8c8d",
        fontname="Helvetica",
        fontsize="10",
        style="rounded",
    )
    previous = None
    for instr in block.instructions:
        node_id = _node_id(prefix, instr)
        cluster.add_node(
            pydot.Node(
                node_id,
                label=f"{instr.op}\\n{instr.id}",
                shape="box",
                style="filled",
                fillcolor=OP_COLORS.get(instr.op, "#B0BEC5"),
                color="#34495e",
                fontname="Helvetica",
            )
        )
        if previous is not None:
            graph.add_edge(pydot.Edge(previous, node_id))
        for kind, spec in instr.aborts.items():
            abort_id = f"abort_{spec.exit_code}"
            if abort_id not in abort_nodes:
                abort_nodes[abort_id] = pydot.Node(
                    abort_id,
                    label=f"abort {spec.exit_code_name}",
                    shape="octagon",
                    color="#c0392b",
                    fontname="Helvetica",
                )
            graph.add_edge(
                pydot.Edge(
                    node_id,
                    abort_id,
                    style="dashed",
                    color="#c0392b",
                    label=spec.message if kind == "error" else kind,
                    fontsize="8",
                )
            )
        previous = node_id
    graph.add_subgraph(cluster)
    return cluster


def build_glue_graph(module: GlueModule):
    """Build a ``pydot.Dot`` with one cluster per generated function body."""

    graph = pydot.Dot(
        "fvmgen_glue",
        graph_type="digraph",
        rankdir="TB",
        fontname="Helvetica",
    )
    abort_nodes = {}

    for iface in module.state_interfaces:
        _block_cluster(graph, iface.load, f"{iface.name}_load", iface.load.name, abort_nodes)
        _block_cluster(graph, iface.save, f"{iface.name}_save", iface.save.name, abort_nodes)

    table = module.dispatch_table
    if table is not None:
        graph.add_node(
            pydot.Node(
                "dispatch",
                label=f"{table.symbol}()\\nmethod_number()",
                shape="diamond",
                fontname="Helvetica",
            )
        )
        for index, case in enumerate(table.cases):
            prefix = f"case{index}"
            _block_cluster(
                graph, case.block, prefix, f"{case.binding} => {case.entry.method_name}", abort_nodes
            )
            if case.block.instructions:
                first = _node_id(prefix, case.block.instructions[0])
                graph.add_edge(pydot.Edge("dispatch", first, label=str(case.binding)))
        default = table.default_abort
        abort_id = f"abort_{default.exit_code}"
        if abort_id not in abort_nodes:
            abort_nodes[abort_id] = pydot.Node(
                abort_id,
                label=f"abort {default.exit_code_name}",
                shape="octagon",
                color="#c0392b",
                fontname="Helvetica",
            )
        graph.add_edge(pydot.Edge("dispatch", abort_id, label="_", style="dashed"))

    for node in abort_nodes.values():
        graph.add_node(node)
    return graph


def export_glue_graph(module: GlueModule, output_path):
    """Write the glue graph; ``.dot`` files need no Graphviz install."""

    graph = build_glue_graph(module)
    output_path = Path(output_path)
    if output_path.suffix == ".dot":
        graph.write_raw(str(output_path))
    else:
        graph.write(str(output_path), format=output_path.suffix.lstrip(".") or "svg")
    print(f"  ✓ Glue graph exported → {output_path}")
    return output_path


__all__ = ["OP_COLORS", "build_glue_graph", "export_glue_graph"]
