from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional


@dataclass
class SessionRecord:
    """Serializable metadata describing a spawned assistant session."""

    id: str
    tool: str
    backend: str
    command: List[str]
    cwd: str
    pid: Optional[int]
    status: str
    created_at: float
    updated_at: float
    stdout_log: Optional[str] = None
    exit_code: Optional[int] = None
    # Backend specific addressing (tmux pane id, dtach socket path, ...)
    mux: Dict[str, Any] = field(default_factory=dict)
    launcher_pid: Optional[int] = None
    adopted: bool = False

    @property
    def mux_session(self) -> Optional[str]:
        return self.mux.get("session")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tool": self.tool,
            "backend": self.backend,
            "command": self.command,
            "cwd": self.cwd,
            "pid": self.pid,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "stdout_log": self.stdout_log,
            "exit_code": self.exit_code,
            "mux": self.mux,
            "launcher_pid": self.launcher_pid,
            "adopted": self.adopted,
        }

    def to_payload(self) -> Dict[str, Any]:
        payload = self.to_dict()
        payload["command"] = list(self.command)
        payload["mux"] = dict(self.mux or {})
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any], *, default_id: Optional[str] = None) -> "SessionRecord":
        def get_list(k): return data.get(k) if isinstance(data.get(k), list) else []
        def get_dict(k): return data.get(k) if isinstance(data.get(k), dict) else {}

        return cls(
            id=str(data.get("id") or default_id or ""),
            tool=str(data.get("tool") or ""),
            backend=str(data.get("backend") or "terminal"),
            command=[str(x) for x in get_list("command")],
            cwd=str(data.get("cwd") or ""),
            pid=data.get("pid"),
            status=str(data.get("status") or "unknown"),
            created_at=float(data.get("created_at") or 0.0),
            updated_at=float(data.get("updated_at") or 0.0),
            stdout_log=data.get("stdout_log"),
            exit_code=data.get("exit_code"),
            mux=dict(get_dict("mux")),
            launcher_pid=data.get("launcher_pid"),
            adopted=bool(data.get("adopted", False)),
        )
