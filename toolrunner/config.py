"""Harness configuration loading and validation."""

import codecs
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import yaml

from toolrunner.exceptions import ConfigValidationError, ValidationError


@dataclass
class ToolConfig:
    """Configured tool: where it lives and the arguments a batch run passes."""
    name: str
    path: Path
    args: List[str] = field(default_factory=list)


@dataclass
class HarnessConfig:
    """
    Harness settings.

    Attributes:
        encoding: Encoding of the captured output buffers
        trust_bare_exit: Treat a tool's own ``raise SystemExit`` as an exit request
        intercept_process_exit: Also guard ``os._exit``
        timeout_sec: Default per-run timeout (None = wait forever)
        tools: Configured tools by name
    """
    encoding: str = "utf-8"
    trust_bare_exit: bool = True
    intercept_process_exit: bool = True
    timeout_sec: Optional[float] = None
    tools: Dict[str, ToolConfig] = field(default_factory=dict)


class ConfigLoader:
    """Loads and validates harness configuration YAML."""

    KNOWN_FIELDS = {'encoding', 'trust_bare_exit', 'intercept_process_exit', 'timeout_sec', 'tools'}
    KNOWN_TOOL_FIELDS = {'path', 'args'}

    def __init__(self):
        self.errors: List[ValidationError] = []

    def load(self, config_path: Union[str, Path]) -> HarnessConfig:
        """Load and validate a config file. Tool paths resolve against its directory."""
        config_path = Path(config_path)
        try:
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f)
        except Exception as e:
            self._add_error(f"Failed to load config: {e}")
            self._raise_validation_errors()

        if data is None:
            data = {}
        return self.from_dict(data, base_dir=config_path.resolve().parent)

    def from_dict(self, data: Any, base_dir: Optional[Path] = None) -> HarnessConfig:
        """Validate an already parsed config mapping."""
        self.errors = []
        base_dir = base_dir or Path.cwd()

        if not isinstance(data, dict):
            self._add_error("Config must be a YAML object/dictionary")
            self._raise_validation_errors()

        for key in data.keys():
            if key not in self.KNOWN_FIELDS:
                self._add_error(f"Unknown field '{key}'", str(key))

        config = HarnessConfig()

        encoding = data.get('encoding', config.encoding)
        if not isinstance(encoding, str):
            self._add_error("'encoding' must be a string", 'encoding')
        else:
            try:
                codecs.lookup(encoding)
                config.encoding = encoding
            except LookupError:
                self._add_error(f"Unknown encoding '{encoding}'", 'encoding')

        for flag in ('trust_bare_exit', 'intercept_process_exit'):
            value = data.get(flag, getattr(config, flag))
            if not isinstance(value, bool):
                self._add_error(f"'{flag}' must be a boolean", flag)
            else:
                setattr(config, flag, value)

        timeout = data.get('timeout_sec')
        if timeout is not None:
            if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
                self._add_error("'timeout_sec' must be a positive number", 'timeout_sec')
            else:
                config.timeout_sec = float(timeout)

        tools = data.get('tools', {})
        if tools is None:
            tools = {}
        if not isinstance(tools, dict):
            self._add_error("'tools' must be a dictionary", 'tools')
        else:
            for name, tool in tools.items():
                tool_config = self._validate_tool(str(name), tool, base_dir)
                if tool_config is not None:
                    config.tools[tool_config.name] = tool_config

        if self.errors:
            self._raise_validation_errors()
        return config

    def _validate_tool(self, name: str, tool: Any, base_dir: Path) -> Optional[ToolConfig]:
        path = f"tools.{name}"
        if isinstance(tool, str):
            tool = {'path': tool}
        if not isinstance(tool, dict):
            self._add_error(f"Tool '{name}' must be a dictionary or a path", path)
            return None

        for key in tool.keys():
            if key not in self.KNOWN_TOOL_FIELDS:
                self._add_error(f"Tool '{name}': unknown field '{key}'", path)

        location = tool.get('path')
        if not location or not isinstance(location, str):
            self._add_error(f"Tool '{name}' missing required 'path' field", path)
            return None

        args = tool.get('args', [])
        if not isinstance(args, list) or not all(isinstance(a, (str, int, float)) for a in args):
            self._add_error(f"Tool '{name}': 'args' must be a list of strings", path)
            return None

        tool_path = Path(location)
        if not tool_path.is_absolute():
            tool_path = base_dir / tool_path

        return ToolConfig(name=name, path=tool_path, args=[str(a) for a in args])

    def _add_error(self, message: str, path: str = "") -> None:
        self.errors.append(ValidationError(message=message, path=path))

    def _raise_validation_errors(self) -> None:
        errors = self.errors
        self.errors = []
        raise ConfigValidationError(errors)


def load_config(config_path: Optional[Union[str, Path]] = None) -> HarnessConfig:
    """Load config from ``config_path``, or return defaults when it is None."""
    if config_path is None:
        return HarnessConfig()
    return ConfigLoader().load(config_path)
