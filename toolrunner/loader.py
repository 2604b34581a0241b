"""Tool loader: manifest parsing and entry-point resolution."""

import importlib
import inspect
import logging
import sys
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from toolrunner.exceptions import LoadError


logger = logging.getLogger(__name__)

MANIFEST_PATH = "META-INF/MANIFEST.MF"
ENTRY_POINT_KEY = "Main-Class"
DEFAULT_FUNCTION = "main"


@dataclass(frozen=True)
class LoadedEntryPoint:
    """
    Resolved tool entry point.

    Attributes:
        function: Callable taking the argument list (or nothing)
        origin: Where the tool was loaded from
        symbol: Entry-point symbol as written in the manifest
        accepts_args: Whether the callable takes the argument list
    """
    function: Callable[..., Any]
    origin: str
    symbol: str
    accepts_args: bool = True

    def __call__(self, args):
        if self.accepts_args:
            return self.function(args)
        return self.function()


def parse_manifest(text: str) -> Dict[str, str]:
    """
    Parse the main section of a manifest.

    Attributes are ``Name: value`` lines; a line starting with a single space
    continues the previous value. The main section ends at the first blank
    line.
    """
    attributes: Dict[str, str] = {}
    last_key: Optional[str] = None

    for number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            if attributes:
                break
            continue

        if line.startswith(" "):
            if last_key is None:
                raise LoadError(f"manifest line {number}: continuation without an attribute")
            attributes[last_key] += line[1:]
            continue

        key, sep, value = line.partition(":")
        key = key.strip()
        if not sep or not key or (value and not value.startswith(" ")):
            raise LoadError(f"manifest line {number}: expected 'Name: value', got {line!r}")

        attributes[key] = value[1:] if value else ""
        last_key = key

    return attributes


def read_manifest(location: Union[str, Path]) -> Dict[str, str]:
    """Read the manifest of a tool archive or unpacked tool directory."""
    path = Path(location)
    if not path.exists():
        raise LoadError("tool location does not exist", str(path))

    try:
        if path.is_dir():
            manifest_file = path / MANIFEST_PATH
            if not manifest_file.is_file():
                raise LoadError(f"missing {MANIFEST_PATH}", str(path))
            raw = manifest_file.read_bytes()
        elif zipfile.is_zipfile(path):
            with zipfile.ZipFile(path) as archive:
                try:
                    raw = archive.read(MANIFEST_PATH)
                except KeyError:
                    raise LoadError(f"missing {MANIFEST_PATH}", str(path)) from None
        else:
            raise LoadError("not a zip archive or directory", str(path))
    except (OSError, zipfile.BadZipFile) as e:
        raise LoadError(f"failed to read manifest: {e}", str(path)) from e

    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise LoadError(f"manifest is not valid UTF-8: {e}", str(path)) from e

    try:
        return parse_manifest(text)
    except LoadError as e:
        raise LoadError(str(e), str(path)) from None


def entry_point_from_callable(
    function: Callable[..., Any], origin: str = "<memory>", symbol: Optional[str] = None
) -> LoadedEntryPoint:
    """Wrap an in-memory callable, checking it fits the entry-point signature."""
    symbol = symbol or getattr(function, "__qualname__", repr(function))
    if not callable(function):
        raise LoadError(f"entry point '{symbol}' is not callable", origin)

    return LoadedEntryPoint(
        function=function,
        origin=origin,
        symbol=symbol,
        accepts_args=_accepts_args(function, symbol, origin),
    )


def _accepts_args(function: Callable[..., Any], symbol: str, origin: str) -> bool:
    try:
        signature = inspect.signature(function)
    except (TypeError, ValueError):
        # Builtins without introspection data; assume main(args).
        return True

    positional = [
        p for p in signature.parameters.values()
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
    ]
    required = [p for p in positional if p.default is p.empty]
    required_kw = [
        p for p in signature.parameters.values()
        if p.kind == p.KEYWORD_ONLY and p.default is p.empty
    ]
    has_varargs = any(p.kind == p.VAR_POSITIONAL for p in signature.parameters.values())

    if len(required) > 1 or required_kw:
        raise LoadError(f"entry point '{symbol}' must take at most one argument", origin)
    return bool(positional) or has_varargs


class ToolLoader:
    """Loads tools from archives whose manifest names an entry point."""

    def __init__(self, prepend_path: bool = True):
        """
        Initialize loader.

        Args:
            prepend_path: Put tool locations at the front of sys.path
        """
        self.prepend_path = prepend_path
        self._path_entries: List[str] = []

    def load(self, location: Union[str, Path]) -> LoadedEntryPoint:
        """Read the manifest and resolve its entry point."""
        path = Path(location).resolve()
        manifest = read_manifest(path)

        symbol = manifest.get(ENTRY_POINT_KEY, "").strip()
        if not symbol:
            raise LoadError(f"manifest has no '{ENTRY_POINT_KEY}' attribute", str(path))

        self._add_to_path(path)
        target = self._resolve(symbol, path)

        entry_point = entry_point_from_callable(target, origin=str(path), symbol=symbol)
        logger.debug(f"Loaded entry point {symbol} from {path}")
        return entry_point

    def _add_to_path(self, path: Path) -> None:
        entry = str(path)
        if entry in sys.path:
            return
        if self.prepend_path:
            sys.path.insert(0, entry)
        else:
            sys.path.append(entry)
        self._path_entries.append(entry)
        importlib.invalidate_caches()

    def release_paths(self) -> None:
        """Take the locations this loader added back off sys.path."""
        for entry in self._path_entries:
            if entry in sys.path:
                sys.path.remove(entry)
        self._path_entries = []

    def _resolve(self, symbol: str, path: Path) -> Any:
        """
        Resolve ``symbol`` to a callable.

        Accepts ``pkg.mod`` (uses ``main``), ``pkg.mod:attr`` and
        ``pkg.mod.attr``. A class resolves to its ``main``.
        """
        if ":" in symbol:
            module_name, _, attribute = symbol.partition(":")
            module = self._import(module_name, path)
            target = self._get_attribute(module, attribute, symbol, path)
        else:
            module, attribute = self._import_longest(symbol, path)
            if attribute:
                target = self._get_attribute(module, attribute, symbol, path)
            else:
                target = self._get_attribute(module, DEFAULT_FUNCTION, symbol, path)

        if inspect.isclass(target):
            target = self._get_attribute(target, DEFAULT_FUNCTION, symbol, path)
        return target

    def _import_longest(self, symbol: str, path: Path) -> Tuple[Any, str]:
        """Import the longest importable module prefix of a dotted symbol."""
        parts = symbol.split(".")
        for split in range(len(parts), 0, -1):
            module_name = ".".join(parts[:split])
            try:
                module = self._import(module_name, path)
            except LoadError as e:
                if not isinstance(e.__cause__, ModuleNotFoundError) or split == 1:
                    raise
                if e.__cause__.name not in (module_name, None):
                    raise
                continue
            return module, ".".join(parts[split:])
        raise LoadError(f"can't resolve entry point '{symbol}'", str(path))

    def _import(self, module_name: str, path: Path) -> Any:
        try:
            module = importlib.import_module(module_name)
        except (Exception, SystemExit) as e:
            raise LoadError(
                f"failed to import '{module_name}': {type(e).__name__}: {e}", str(path)
            ) from e

        module_file = getattr(module, "__file__", None)
        if module_file and not Path(module_file).resolve().is_relative_to(path):
            raise LoadError(
                f"module '{module_name}' is already loaded from {module_file}", str(path)
            )
        return module

    @staticmethod
    def _get_attribute(owner: Any, attribute: str, symbol: str, path: Path) -> Any:
        target = owner
        for part in attribute.split("."):
            try:
                target = getattr(target, part)
            except AttributeError:
                raise LoadError(f"can't resolve entry point '{symbol}': no '{part}'", str(path)) from None
        return target
