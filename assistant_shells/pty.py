from dataclasses import dataclass
import asyncio
import fcntl
import struct
import termios
from typing import Optional

@dataclass
class PTYState:
    master_fd: int
    session_id: Optional[str] = None
    process: Optional[asyncio.subprocess.Process] = None
    reader: Optional[asyncio.Task] = None
    # `dtach -a` client relaying I/O to a detached session
    proxy_pid: Optional[int] = None
    closed: bool = False


def make_raw(fd: int) -> None:
    """Put the slave side in raw mode so input bytes reach the tool unchanged."""
    try:
        attrs = termios.tcgetattr(fd)
        attrs[0] = attrs[0] & ~(termios.ICRNL | termios.IXON)
        attrs[1] = attrs[1] & ~termios.OPOST
        attrs[3] = attrs[3] & ~(termios.ICANON | termios.ECHO | termios.ISIG)
        attrs[6][termios.VMIN] = 1
        attrs[6][termios.VTIME] = 0
        termios.tcsetattr(fd, termios.TCSANOW, attrs)
    except termios.error:
        pass


def set_winsize(fd: int, cols: int, rows: int) -> None:
    winsz = struct.pack("HHHH", max(1, rows), max(1, cols), 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsz)
