"""
fvmgen.macros: compile-time half of the actor interface compiler.

  #[fvm_state]    structure  → derives + StateObject load/save
  #[fvm_payload]  structure  → derives
  #[fvm_actor]    impl block → exported `invoke` dispatch table
  #[fvm_export]   method     → numbered entry point (binding = N)

| Stage                         | Module        |
<------------------------------ + ------------- >
| Declaration syntax            | syntax        |
| Attribute grammar             | attrs         |
| Analyzer / classifier         | analyzer      |
| Program model                 | model         |
| Glue IR lowering              | glue          |
| Rust emission                 | codegen       |
| Host hooks                    | hooks         |
| Interface manifest            | manifest      |
| Graphviz export               | visualize     |
"""

from . import diagnostics as _diagnostics
from . import syntax as _syntax
from . import attrs as _attrs
from . import model as _model
from . import analyzer as _analyzer
from . import glue as _glue
from . import codegen as _codegen
from . import hooks as _hooks
from . import manifest as _manifest
from . import visualize as _visualize

from .diagnostics import *
from .syntax import *
from .attrs import *
from .model import *
from .analyzer import *
from .glue import *
from .codegen import *
from .hooks import *
from .manifest import *
from .visualize import *

__all__ = []
for module in (
    _diagnostics,
    _syntax,
    _attrs,
    _model,
    _analyzer,
    _glue,
    _codegen,
    _hooks,
    _manifest,
    _visualize,
):
    __all__.extend(getattr(module, "__all__", []))
__all__ = list(dict.fromkeys(__all__))
