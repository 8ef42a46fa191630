"""Host resolution from command-line options or a YAML inventory."""

import re
from pathlib import Path
from typing import Any, Optional

import yaml

from sshfan.errors import ConfigError
from sshfan.models import DEFAULT_PORT, DEFAULT_TIMEOUT, HostSpec

DEFAULT_USERNAME = "root"

HOST_SEPARATORS = re.compile(r"[,; ]")

INVENTORY_TEMPLATE = """\
# sshfan inventory
#
# Top-level settings apply to the top-level hosts below. A section is
# a self-contained inventory of its own; select it with --section NAME.

username: root
password: ""
port: 22
timeout: 30

# Hosts sharing the settings above.
hosts:
  - 192.168.1.10
  - 192.168.1.11

# Hosts with their own settings.
host:
  - host: 192.168.1.12
    port: 2222
    username: admin
    password: secret

web:
  username: deploy
  hosts:
    - web1.example.com
    - web2.example.com
"""


def split_hosts(hosts: str) -> list[str]:
    """Split a host string on commas, semicolons and spaces."""
    return [h for h in HOST_SEPARATORS.split(hosts) if h]


def resolve_hosts(
    hosts: Optional[str] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
    port: Optional[int] = None,
    config_path: Optional[Path] = None,
    section: Optional[str] = None,
    timeout: Optional[float] = None,
) -> list[HostSpec]:
    """Resolve the host list from exactly one source.

    Args:
        hosts: Host string from the command line.
        username: Username for command-line hosts.
        password: Password for command-line hosts.
        port: Port for command-line hosts.
        config_path: YAML inventory file.
        section: Section of the inventory to use; top level when empty.
        timeout: Connect timeout where the inventory does not set one.

    Returns:
        Hosts in input order, indexed from 0.

    Raises:
        ConfigError: If both or neither source is given, or the inventory
            is malformed.
    """
    using_args = any(v is not None for v in (hosts, username, password, port))
    using_file = config_path is not None or section is not None

    if using_args and using_file:
        raise ConfigError(
            "use either an inventory file or --hosts/--username/--password/--port, not both"
        )

    default_timeout = DEFAULT_TIMEOUT if timeout is None else timeout
    if default_timeout <= 0:
        raise ConfigError(f"timeout should be positive, got {default_timeout}")

    if using_args:
        if port is not None and not 0 <= port <= 65535:
            raise ConfigError(f"port should be in the range [0, 65535], got {port}")
        return [
            HostSpec(
                host=host,
                index=index,
                port=DEFAULT_PORT if port is None else port,
                username=DEFAULT_USERNAME if username is None else username,
                password=password or "",
                timeout=default_timeout,
            )
            for index, host in enumerate(split_hosts(hosts or ""))
        ]

    if using_file:
        if config_path is None:
            raise ConfigError("--section requires an inventory file")
        table = load_inventory(config_path)
        if not section:
            return hosts_from_table("", table, default_timeout)
        if section not in table:
            raise ConfigError(f"no {section} section in {config_path}")
        section_table = table[section]
        if not isinstance(section_table, dict):
            raise ConfigError(f"section {section} should be a mapping")
        return hosts_from_table(section, section_table, default_timeout)

    raise ConfigError("no hosts given: use --hosts or an inventory file")


def load_inventory(path: Path) -> dict[str, Any]:
    """Load an inventory file.

    Raises:
        ConfigError: If the file cannot be read or is not a YAML mapping.
    """
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"cannot read inventory {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"inventory {path} should contain a mapping")
    return data


def hosts_from_table(section: str, table: dict[str, Any], timeout: float) -> list[HostSpec]:
    """Build hosts from one inventory mapping.

    Shared ``hosts`` come first, then per-host ``host`` entries, which may
    override username, password, port and timeout.
    """
    where = _location(section)
    username = _get_str(table, "username", where)
    username = DEFAULT_USERNAME if username is None else username
    password = _get_str(table, "password", where)
    password = "" if password is None else password
    port = _get_port(table, where)
    port = DEFAULT_PORT if port is None else port
    shared_timeout = _get_timeout(table, where)
    shared_timeout = timeout if shared_timeout is None else shared_timeout

    targets: list[tuple[str, str, str, int, float]] = []

    for host in _get_list(table, "hosts", where):
        if not isinstance(host, str):
            raise ConfigError(f"hosts of {where} should be strings")
        if host:
            targets.append((host, username, password, port, shared_timeout))

    for entry in _get_list(table, "host", where):
        if not isinstance(entry, dict):
            raise ConfigError(f"host entries of {where} should be mappings")
        if "host" not in entry:
            raise ConfigError(f"host of {where} is missing")
        host = _get_str(entry, "host", where)
        if not host:
            continue

        entry_where = _location(section, host)
        entry_username = _get_str(entry, "username", entry_where)
        entry_password = _get_str(entry, "password", entry_where)
        entry_port = _get_port(entry, entry_where)
        entry_timeout = _get_timeout(entry, entry_where)
        targets.append((
            host,
            username if entry_username is None else entry_username,
            password if entry_password is None else entry_password,
            port if entry_port is None else entry_port,
            shared_timeout if entry_timeout is None else entry_timeout,
        ))

    return [
        HostSpec(
            host=host,
            index=index,
            port=host_port,
            username=host_username,
            password=host_password,
            timeout=host_timeout,
        )
        for index, (host, host_username, host_password, host_port, host_timeout) in enumerate(targets)
    ]


def write_template(path: Path, force: bool = False) -> Path:
    """Write the example inventory to ``path``.

    Raises:
        ConfigError: If the file exists and ``force`` is not set.
    """
    if path.exists() and not force:
        raise ConfigError(f"{path} already exists (use --force to overwrite)")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(INVENTORY_TEMPLATE)
    return path


def _location(section: str, host: str = "") -> str:
    name = section or "default section"
    if host:
        return f"[{name}] host {host}"
    return f"[{name}]"


def _get_str(table: dict[str, Any], key: str, where: str) -> Optional[str]:
    value = table.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{key} of {where} should be a string")
    return value


def _get_port(table: dict[str, Any], where: str) -> Optional[int]:
    value = table.get("port")
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"port of {where} should be an integer")
    if not 0 <= value <= 65535:
        raise ConfigError(f"port of {where} should be in the range [0, 65535]")
    return value


def _get_timeout(table: dict[str, Any], where: str) -> Optional[float]:
    value = table.get("timeout")
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"timeout of {where} should be a positive number")
    return float(value)


def _get_list(table: dict[str, Any], key: str, where: str) -> list[Any]:
    value = table.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{key} of {where} should be a list")
    return value
