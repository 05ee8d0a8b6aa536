"""S3 オブジェクトキーのテンプレート

テンプレートはリテラル文字列と ``{{ action }}`` ブロックで構成される。
action は関数名と文字列引数からなる::

    uploads/{{ dateWithFormat "2006/01/02" }}/{{ fileName }}
    {{ fileNameWithoutExtension() }}-backup{{ fileExtension() }}

使える関数は absoluteFilePath, dateWithFormat, fileExtension, fileName,
fileNameWithoutExtension, filePath のみ。``{{/* ... */}}`` はコメント、
``{{-`` と ``-}}`` は隣接する空白を削除する。
"""
import os
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, Union

from ..errors import TemplateCompileError, TemplateRenderError


ACTION_START = "{{"
ACTION_END = "}}"

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_GO_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"', "'": "'"}


@dataclass(frozen=True)
class FileTemplateData:
    """テンプレート評価時のファイル情報（評価ごとに作成、読み取り専用）"""
    file_path: str
    stat: os.stat_result
    now: datetime = field(default_factory=lambda: datetime.now().astimezone())

    def absolute_file_path(self) -> str:
        if os.path.isabs(self.file_path):
            return self.file_path
        try:
            cwd = os.getcwd()
        except OSError as e:
            raise TemplateRenderError(
                f"failed to parse absolute path for file: {self.file_path}: {e}"
            ) from e
        return os.path.normpath(os.path.join(cwd, self.file_path))

    def date_with_format(self, layout: str) -> str:
        return format_date(self.now, layout)

    def file_extension(self) -> str:
        name = self.file_name()
        index = name.rfind(".")
        return name[index:] if index >= 0 else ""

    def file_name(self) -> str:
        return os.path.basename(self.file_path.rstrip("/" + os.sep) or self.file_path)

    def file_name_without_extension(self) -> str:
        name = self.file_name()
        ext = self.file_extension()
        return name[:len(name) - len(ext)] if ext else name

    def relative_file_path(self) -> str:
        """指定されたままのパス"""
        return self.file_path


# 関数名 -> (引数の数, 実装)
TEMPLATE_FUNCTIONS: Dict[str, Tuple[int, Callable[..., str]]] = {
    "absoluteFilePath": (0, FileTemplateData.absolute_file_path),
    "dateWithFormat": (1, FileTemplateData.date_with_format),
    "fileExtension": (0, FileTemplateData.file_extension),
    "fileName": (0, FileTemplateData.file_name),
    "fileNameWithoutExtension": (0, FileTemplateData.file_name_without_extension),
    "filePath": (0, FileTemplateData.relative_file_path),
}


# Go のレイアウト表記（基準時刻 Mon Jan 2 15:04:05 MST 2006）。長いものから順に照合する
def _twelve_hour(dt: datetime) -> int:
    return dt.hour % 12 or 12


def _utc_offset(dt: datetime, sep: str, z: bool) -> str:
    offset = dt.utcoffset()
    if offset is None or (z and not offset):
        return "Z" if z else f"+00{sep}00"
    minutes = int(offset.total_seconds()) // 60
    sign = "-" if minutes < 0 else "+"
    hours, minutes = divmod(abs(minutes), 60)
    return f"{sign}{hours:02d}{sep}{minutes:02d}"


_GO_LAYOUT_TOKENS: List[Tuple[str, Callable[[datetime], str]]] = [
    ("January", lambda dt: dt.strftime("%B")),
    ("Monday", lambda dt: dt.strftime("%A")),
    ("Z07:00", lambda dt: _utc_offset(dt, ":", True)),
    ("-07:00", lambda dt: _utc_offset(dt, ":", False)),
    ("Z0700", lambda dt: _utc_offset(dt, "", True)),
    ("-0700", lambda dt: _utc_offset(dt, "", False)),
    (".000000", lambda dt: f".{dt.microsecond:06d}"),
    (".000", lambda dt: f".{dt.microsecond // 1000:03d}"),
    ("2006", lambda dt: f"{dt.year:04d}"),
    ("Jan", lambda dt: dt.strftime("%b")),
    ("Mon", lambda dt: dt.strftime("%a")),
    ("MST", lambda dt: dt.tzname() or ""),
    ("002", lambda dt: f"{dt.timetuple().tm_yday:03d}"),
    ("_2", lambda dt: f"{dt.day:>2d}"),
    ("01", lambda dt: f"{dt.month:02d}"),
    ("02", lambda dt: f"{dt.day:02d}"),
    ("03", lambda dt: f"{_twelve_hour(dt):02d}"),
    ("04", lambda dt: f"{dt.minute:02d}"),
    ("05", lambda dt: f"{dt.second:02d}"),
    ("06", lambda dt: f"{dt.year % 100:02d}"),
    ("15", lambda dt: f"{dt.hour:02d}"),
    ("PM", lambda dt: "PM" if dt.hour >= 12 else "AM"),
    ("pm", lambda dt: "pm" if dt.hour >= 12 else "am"),
    ("1", lambda dt: str(dt.month)),
    ("2", lambda dt: str(dt.day)),
    ("3", lambda dt: str(_twelve_hour(dt))),
    ("4", lambda dt: str(dt.minute)),
    ("5", lambda dt: str(dt.second)),
]


def format_date(dt: datetime, layout: str) -> str:
    """日時をフォーマット

    '%' を含むレイアウトは strftime 形式、それ以外は Go の基準時刻形式として扱う。
    """
    if "%" in layout:
        return dt.strftime(layout)

    out: List[str] = []
    i = 0
    while i < len(layout):
        for token, render in _GO_LAYOUT_TOKENS:
            if layout.startswith(token, i):
                out.append(render(dt))
                i += len(token)
                break
        else:
            out.append(layout[i])
            i += 1
    return "".join(out)


@dataclass(frozen=True)
class _Call:
    name: str
    args: Tuple[str, ...]
    position: int


_Node = Union[str, _Call]


class _Parser:
    """テンプレート文字列をノード列に変換"""

    def __init__(self, text: str):
        self.text = text
        self.nodes: List[_Node] = []
        self._trim_next = False

    def parse(self) -> List[_Node]:
        text = self.text
        pos = 0
        while True:
            start = text.find(ACTION_START, pos)
            if start < 0:
                self._add_text(text[pos:])
                break

            literal = text[pos:start]
            body_start = start + len(ACTION_START)
            if text.startswith("- ", body_start):
                literal = literal.rstrip()
                body_start += 1
            self._add_text(literal)

            end = self._find_action_end(body_start, start)
            body = text[body_start:end]
            trim_right = body.endswith(" -")
            if trim_right:
                body = body[:-1]

            node = self._parse_action(body, start)
            if node is not None:
                self.nodes.append(node)
            self._trim_next = trim_right
            pos = end + len(ACTION_END)

        return self._merge_text()

    def _add_text(self, literal: str) -> None:
        if self._trim_next:
            literal = literal.lstrip()
            self._trim_next = False
        if literal:
            self.nodes.append(literal)

    def _merge_text(self) -> List[_Node]:
        merged: List[_Node] = []
        for node in self.nodes:
            if isinstance(node, str) and merged and isinstance(merged[-1], str):
                merged[-1] += node
            else:
                merged.append(node)
        return merged

    def _find_action_end(self, pos: int, action_start: int) -> int:
        """引用符の中を飛ばして '}}' の位置を探す"""
        text = self.text
        quote: Optional[str] = None
        while pos < len(text):
            char = text[pos]
            if quote:
                if char == "\\" and quote == '"':
                    pos += 2
                    continue
                if char == quote:
                    quote = None
            elif char in ('"', "`"):
                quote = char
            elif text.startswith(ACTION_END, pos):
                return pos
            pos += 1
        raise TemplateCompileError("unclosed action", action_start)

    def _parse_action(self, body: str, position: int) -> Optional[_Call]:
        stripped = body.strip()
        if stripped.startswith("/*"):
            if not stripped.endswith("*/"):
                raise TemplateCompileError("unclosed comment", position)
            return None
        if not stripped:
            raise TemplateCompileError("missing function in action", position)

        match = _IDENTIFIER.match(stripped)
        if not match:
            raise TemplateCompileError(f"unexpected {stripped[0]!r} in action", position)
        name = match.group(0)
        if name not in TEMPLATE_FUNCTIONS:
            raise TemplateCompileError(f'function "{name}" not defined', position)

        rest = stripped[match.end():].strip()
        if rest.startswith("("):
            if not rest.endswith(")"):
                raise TemplateCompileError(f"unclosed call to {name}", position)
            args = self._parse_args(rest[1:-1], position, separator=",")
        else:
            args = self._parse_args(rest, position, separator=None)

        arity = TEMPLATE_FUNCTIONS[name][0]
        if len(args) != arity:
            raise TemplateCompileError(
                f"wrong number of args for {name}: want {arity} got {len(args)}", position
            )
        return _Call(name=name, args=tuple(args), position=position)

    def _parse_args(self, source: str, position: int, separator: Optional[str]) -> List[str]:
        args: List[str] = []
        i = 0
        expect_separator = False
        while i < len(source):
            char = source[i]
            if char.isspace():
                i += 1
                continue
            if separator and char == separator:
                if not expect_separator:
                    raise TemplateCompileError(f"unexpected {separator!r} in arguments", position)
                expect_separator = False
                i += 1
                continue
            if expect_separator:
                raise TemplateCompileError("missing separator between arguments", position)
            if char == '"':
                value, i = self._read_quoted(source, i + 1, position)
            elif char == "`":
                end = source.find("`", i + 1)
                if end < 0:
                    raise TemplateCompileError("unterminated raw quoted string", position)
                value, i = source[i + 1:end], end + 1
            else:
                raise TemplateCompileError(
                    f"arguments must be quoted strings, got {source[i:].split()[0]!r}", position
                )
            args.append(value)
            expect_separator = separator is not None
        if separator and args and not expect_separator:
            raise TemplateCompileError(f"trailing {separator!r} in arguments", position)
        return args

    @staticmethod
    def _read_quoted(source: str, i: int, position: int) -> Tuple[str, int]:
        out: List[str] = []
        while i < len(source):
            char = source[i]
            if char == "\\":
                if i + 1 >= len(source) or source[i + 1] not in _GO_ESCAPES:
                    raise TemplateCompileError("invalid escape in quoted string", position)
                out.append(_GO_ESCAPES[source[i + 1]])
                i += 2
                continue
            if char == '"':
                return "".join(out), i + 1
            out.append(char)
            i += 1
        raise TemplateCompileError("unterminated quoted string", position)


class KeyTemplate:
    """コンパイル済みのキーテンプレート

    評価中のファイル情報はインスタンスで共有するため、ロックで保護する。
    """

    def __init__(self, text: str, nodes: List[_Node]):
        self.text = text
        self._nodes = tuple(nodes)
        self._lock = threading.Lock()
        self._context: Optional[FileTemplateData] = None

    def key_for_file(self, file_path: str) -> str:
        """ファイルパスからキーを生成"""
        # stat はロックの外で行う
        try:
            info = os.stat(file_path)
        except OSError as e:
            raise TemplateRenderError(f"failed to stat file: {file_path}: {e}") from e

        data = FileTemplateData(file_path=file_path, stat=info)
        with self._lock:
            self._context = data
            try:
                return self._execute()
            finally:
                self._context = None

    def _execute(self) -> str:
        parts: List[str] = []
        for node in self._nodes:
            if isinstance(node, str):
                parts.append(node)
                continue
            _, func = TEMPLATE_FUNCTIONS[node.name]
            parts.append(func(self._context, *node.args))
        return "".join(parts)

    def __repr__(self) -> str:
        return f"KeyTemplate({self.text!r})"


def compile_template(text: str) -> KeyTemplate:
    """テンプレート文字列をコンパイル"""
    if text is None:
        raise TemplateCompileError("template text must not be None")
    return KeyTemplate(text, _Parser(text).parse())
