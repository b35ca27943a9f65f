from .base import Backend
from .dtach import DtachBackend
from .terminal import TerminalBackend
from .tmux import TmuxBackend

BUILTIN_BACKENDS = {
    TerminalBackend.name: TerminalBackend,
    TmuxBackend.name: TmuxBackend,
    DtachBackend.name: DtachBackend,
}

__all__ = ["Backend", "TerminalBackend", "TmuxBackend", "DtachBackend", "BUILTIN_BACKENDS"]
