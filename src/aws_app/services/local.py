"""Local facilities managed next to the AWS resources: user-data scripts and systemd units."""

import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List

from ..exceptions import RemoteNotFoundError, RemotePermanentError, ValidationError
from ..logger import logger
from ..schemas import ResourceDescriptor
from ..table_fields import ResourceKind

if TYPE_CHECKING:
    from ..context import AppContext


# ##############################################################################
# Scripts


def _script_path(script_directory: Path, name: str) -> Path:
    path = script_directory / name
    if path.parent.resolve() != script_directory.resolve():
        raise ValidationError("Script names cannot contain directories", {"name": name})
    return path


def list_scripts(ctx: "AppContext") -> List[ResourceDescriptor]:
    directory = ctx.config.script_directory
    if not directory.is_dir():
        return []
    return [
        ResourceDescriptor(
            kind=ResourceKind.SCRIPT,
            id=path.name,
            attributes={"size": path.stat().st_size},
            metadata={"path": str(path)},
        )
        for path in sorted(directory.iterdir())
        if path.is_file()
    ]


def write_script(script_directory: Path, name: str, content: str) -> Dict[str, str]:
    path = _script_path(script_directory, name)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return {"path": str(path)}


def delete_script(script_directory: Path, name: str) -> Dict[str, str]:
    path = _script_path(script_directory, name)
    try:
        path.unlink()
    except FileNotFoundError as e:
        raise RemoteNotFoundError("script", "delete_script", "NoSuchFile", name) from e
    return {"path": str(path)}


# ##############################################################################
# Systemd


def _systemctl(*args: str) -> str:
    try:
        result = subprocess.run(
            ["systemctl", *args], capture_output=True, text=True, check=True
        )
    except FileNotFoundError as e:
        raise RemotePermanentError("systemd", args[0], "NoSystemctl", str(e)) from e
    except subprocess.CalledProcessError as e:
        raise RemotePermanentError(
            "systemd", args[0], f"Exit{e.returncode}", e.stderr.strip()
        ) from e
    return result.stdout


def running_units(output: str) -> List[str]:
    """Names of the units listed by `systemctl list-units`, without suffix.

    Examples:
        >>> running_units("cron.service loaded active running Cron\\nnginx.service loaded")
        ['cron', 'nginx']
    """
    return [
        line.split()[0].split(".")[0] for line in output.splitlines() if line.strip()
    ]


def list_services(ctx: "AppContext") -> List[ResourceDescriptor]:
    services = ctx.config.systemd_services
    if not services:
        return []
    running = set(running_units(_systemctl("list-units", "--plain", "--no-legend")))
    return [
        ResourceDescriptor(
            kind=ResourceKind.SYSTEMD,
            id=service,
            attributes={
                "status": "running" if service in running else "not running"
            },
        )
        for service in services
    ]


def control_service(
    ctx: "AppContext", command: str, service: str
) -> Dict[str, str]:
    """Start, stop or restart one of the configured systemd units."""
    if service not in ctx.config.systemd_services:
        raise ValidationError("Service is not managed", {"service": service})
    logger.info("Running systemctl %s %s", command, service)
    _systemctl(command, service)
    return {"service": service, "command": command}
