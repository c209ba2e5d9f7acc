"""
Text form of transform parameter maps.

One parameter per line, ``(Name value value ...)``; string values are
double-quoted, numbers are bare and ``//`` starts a comment.
"""

import re
from pathlib import Path
from typing import List, Sequence

from splinereg.core.errors import ConfigurationError
from splinereg.transforms.parameter_store import ParameterMap

_ENTRY = re.compile(r'^\(\s*(?P<key>[A-Za-z_][\w.]*)\s*(?P<values>.*?)\s*\)$')
_TOKEN = re.compile(r'"([^"]*)"|(\S+)')
_NUMBER = re.compile(r'^[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?$|^[-+]?(inf|nan)$')


def _strip_comment(line: str) -> str:
    # '//' inside a quoted value is kept
    in_quotes = False
    for i, ch in enumerate(line):
        if ch == '"':
            in_quotes = not in_quotes
        elif ch == '/' and not in_quotes and line[i:i + 2] == '//':
            return line[:i]
    return line


def parse_parameter_text(text: str, source: str = '<string>') -> ParameterMap:
    """Parse parameter-file text into a ParameterMap."""
    pmap = ParameterMap()
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = _strip_comment(raw).strip()
        if not line:
            continue
        match = _ENTRY.match(line)
        if match is None or line.count('"') % 2:
            raise ConfigurationError(f"{source}:{lineno}: malformed parameter line {raw.strip()!r}")
        values = [quoted if quoted or bare == '' else bare
                  for quoted, bare in _TOKEN.findall(match.group('values'))]
        pmap[match.group('key')] = values
    return pmap


def format_parameter_map(pmap: ParameterMap) -> str:
    """Format a ParameterMap as parameter-file text in deterministic key order."""
    lines = []
    for key, values in ParameterMap(pmap).ordered_items():
        tokens = [v if _NUMBER.match(v) else f'"{v}"' for v in values]
        lines.append(f"({key} {' '.join(tokens)})" if tokens else f"({key})")
    return '\n'.join(lines) + '\n'


def read_parameter_file(path: str) -> ParameterMap:
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as e:
        raise ConfigurationError(f"Unable to read parameter file {path}: {e}") from e
    return parse_parameter_text(text, source=str(path))


def write_parameter_file(path: str, pmap: ParameterMap) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(format_parameter_map(pmap))


def write_parameter_files(directory: str, maps: Sequence[ParameterMap]) -> List[Path]:
    """
    Write a transform chain as TransformParameters.<i>.txt files.

    InitialTransformParametersFileName entries are rewritten to point at
    the written files.
    """
    directory = Path(directory)
    paths = []
    for i, pmap in enumerate(maps):
        pmap = ParameterMap(pmap).copy()
        if i > 0:
            pmap.set('InitialTransformParametersFileName', str(paths[i - 1]))
        path = directory / f'TransformParameters.{i}.txt'
        write_parameter_file(path, pmap)
        paths.append(path)
    return paths


def read_parameter_files(path: str) -> List[ParameterMap]:
    """
    Read a transform chain starting from its last parameter file.

    InitialTransformParametersFileName entries are followed until
    'NoInitialTransform'; the result is ordered as applied.
    """
    maps = []
    seen = set()
    current = Path(path)
    while True:
        resolved = current.resolve()
        if resolved in seen:
            raise ConfigurationError(f"Cyclic InitialTransformParametersFileName at {current}")
        seen.add(resolved)
        pmap = read_parameter_file(current)
        maps.append(pmap)
        initial = pmap.get_string('InitialTransformParametersFileName', default='NoInitialTransform')
        if initial == 'NoInitialTransform':
            break
        initial_path = Path(initial)
        if not initial_path.is_absolute() and not initial_path.exists():
            initial_path = current.parent / initial_path.name
        current = initial_path
    return maps[::-1]
