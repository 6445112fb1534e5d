"""systemd unit generation for ``--install-service``."""

import getpass
import os
import shutil
import sys

SERVICE_NAME = "otlp-log-agent"
SERVICE_PATH = f"/tmp/{SERVICE_NAME}.service"

UNIT_TEMPLATE = """[Unit]
Description=OTLP Log Agent
After=network.target

[Service]
Type=simple
User={user}
WorkingDirectory={working_dir}
ExecStart={exec_start}
Restart=on-failure
RestartSec=5s

[Install]
WantedBy=multi-user.target
"""


def default_exec_start() -> str:
    """Installed console script if on PATH, else run the module with this interpreter."""
    script = shutil.which("log-agent")
    if script:
        return os.path.abspath(script)
    return f"{sys.executable} -m log_agent.main"


def render_unit(user: str, working_dir: str, exec_start: str) -> str:
    return UNIT_TEMPLATE.format(user=user, working_dir=working_dir, exec_start=exec_start)


def install_instructions(path: str) -> str:
    return "\n".join([
        f"Service file created at: {path}",
        "To install the service, run:",
        f"  sudo cp {path} /etc/systemd/system/",
        "  sudo systemctl daemon-reload",
        f"  sudo systemctl enable {SERVICE_NAME}",
        f"  sudo systemctl start {SERVICE_NAME}",
    ])


def write_service_file(path: str = SERVICE_PATH) -> str:
    """Write the unit file for the current user and directory. Returns its path."""
    content = render_unit(getpass.getuser(), os.getcwd(), default_exec_start())
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    return path
