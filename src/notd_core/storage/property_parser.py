"""Extract property annotations from note and page content.

Recognized forms, in the order they are looked for:

- bracketed annotations ``{name::value}``, ``{name:::value}``, ``{name::::value}``
  (several per line, value ends at ``}``);
- line annotations ``name::value`` at line start or after whitespace, the
  name starting with a letter
  (value runs to end of line);
- the tag shorthand ``tag::label`` in either form, emitted as name
  ``tag::label`` with value ``label``;
- task lines ``TODO ...``/``DONE ...`` (status), ``[[page links]]``,
  ``!{{block refs}}`` and external URLs.

The number of colons is the property weight. Parsing never touches the
store and never raises on bad input: a malformed candidate is dropped.
"""
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from notd_core.config import DEFAULT_TASK_STATES
from notd_core.models.schema import INTERNAL_WEIGHT, PropertyBehavior

logger = logging.getLogger(__name__)

_NAME = r"[A-Za-z0-9_.\-]+"
# Outside braces a name must start with a letter, so "10::30" stays prose
_LINE_NAME = r"[A-Za-z][A-Za-z0-9_.\-]*"

BRACKET_PATTERN = re.compile(r"\{(" + _NAME + r")(:{2,})([^{}\n]+)\}")
LINE_PATTERN = re.compile(
    r"(?:^|(?<=\s))(" + _LINE_NAME + r")(:{2,})(.*)$", re.MULTILINE
)
TAG_LABEL_PATTERN = re.compile(r"[\w./\-]+")
PAGE_LINK_PATTERN = re.compile(r"\[\[([^\[\]\n]+)\]\]")
BLOCK_REF_PATTERN = re.compile(r"!\{\{([^{}\n]+)\}\}")
URL_PATTERN = re.compile(r"(?:https?://|www\.)[^\s<>\[\]{}()\"']+", re.IGNORECASE)

TAG_NAME = "tag"
TAG_PREFIX = TAG_NAME + "::"
STATUS_PROPERTY = "status"
STATUS_WEIGHT = 4
LINK_PROPERTY = "links_to_page"
BLOCK_REF_PROPERTY = "references_block"
URL_PROPERTY = "external_url"
PATTERN_WEIGHT = INTERNAL_WEIGHT

_DEFAULT_TASK_STATES = tuple(DEFAULT_TASK_STATES.split(","))
_URL_TRAILING = ".,;:!?"


@dataclass(frozen=True)
class ParsedProperty:
    """A property candidate found in content.

    Attributes:
        name: Property name (``tag::label`` for tags).
        value: Trimmed value.
        weight: Colon count of the annotation.
        offset: Character offset of the annotation in the content.
    """

    name: str
    value: str
    weight: int
    offset: int = 0

    @property
    def behavior(self) -> PropertyBehavior:
        return PropertyBehavior.from_weight(self.weight)

    @property
    def forced_internal(self) -> bool:
        """A triple-colon annotation is internal whatever the definitions say."""
        return self.weight == INTERNAL_WEIGHT


def is_tag_name(name: str) -> bool:
    """True for names produced by the tag shorthand (``tag::label``)."""
    return name.lower().startswith(TAG_PREFIX)


def tag_label(raw: str) -> Optional[str]:
    """Leading label of a tag value, or None when it has none."""
    match = TAG_LABEL_PATTERN.match(raw.strip())
    return match.group(0) if match else None


def _candidate(name: str, colons: str, raw_value: str, offset: int) -> Optional[ParsedProperty]:
    weight = len(colons)
    value = raw_value.strip()
    if name.lower() == TAG_NAME:
        label = tag_label(value)
        if not label:
            logger.debug(f"Dropping tag annotation without a label at offset {offset}")
            return None
        return ParsedProperty(f"{TAG_PREFIX}{label}", label, weight, offset)
    if not value:
        logger.debug(f"Dropping empty annotation '{name}' at offset {offset}")
        return None
    return ParsedProperty(name, value, weight, offset)


def _mask(content: str, spans: Iterable[tuple]) -> str:
    """Blank out spans so later patterns cannot match inside them."""
    chars = list(content)
    for start, end in spans:
        for i in range(start, end):
            if chars[i] != "\n":
                chars[i] = " "
    return "".join(chars)


def _annotation_candidates(content: str) -> List[ParsedProperty]:
    found = []
    spans = []
    for match in BRACKET_PATTERN.finditer(content):
        spans.append(match.span())
        prop = _candidate(match.group(1), match.group(2), match.group(3), match.start())
        if prop:
            found.append(prop)

    masked = _mask(content, spans) if spans else content
    for match in LINE_PATTERN.finditer(masked):
        prop = _candidate(match.group(1), match.group(2), match.group(3), match.start())
        if prop:
            found.append(prop)
    return found


def _task_candidates(content: str, task_states: Sequence[str]) -> List[ParsedProperty]:
    states = [re.escape(s) for s in task_states if s]
    if not states:
        return []
    pattern = re.compile(
        r"^[ \t]*(?:[-*][ \t]+)?(" + "|".join(states) + r")[ \t]+\S", re.MULTILINE
    )
    return [
        ParsedProperty(STATUS_PROPERTY, m.group(1), STATUS_WEIGHT, m.start(1))
        for m in pattern.finditer(content)
    ]


def _unique(props: Iterable[ParsedProperty]) -> List[ParsedProperty]:
    seen = set()
    result = []
    for prop in props:
        if prop.value in seen:
            continue
        seen.add(prop.value)
        result.append(prop)
    return result


def _reference_candidates(content: str) -> List[ParsedProperty]:
    links = []
    for m in PAGE_LINK_PATTERN.finditer(content):
        target = m.group(1).strip()
        if target:
            links.append(ParsedProperty(LINK_PROPERTY, target, PATTERN_WEIGHT, m.start()))

    blocks = []
    for m in BLOCK_REF_PATTERN.finditer(content):
        ref = m.group(1).strip()
        if ref:
            blocks.append(ParsedProperty(BLOCK_REF_PROPERTY, ref, PATTERN_WEIGHT, m.start()))

    urls = []
    for m in URL_PATTERN.finditer(content):
        url = m.group(0).rstrip(_URL_TRAILING)
        if url.lower().startswith("www."):
            url = "https://" + url
        if len(url) > len("https://"):
            urls.append(ParsedProperty(URL_PROPERTY, url, PATTERN_WEIGHT, m.start()))

    return _unique(links) + _unique(blocks) + _unique(urls)


def parse_properties(content, task_states: Optional[Sequence[str]] = None) -> List[ParsedProperty]:
    """Parse every property candidate out of ``content``.

    Args:
        content: Note or page text. Anything that is not a string yields no
            properties.
        task_states: Words that mark a task line. Defaults to
            TODO/DOING/DONE/SOMEDAY/WAITING/CANCELLED.

    Returns:
        Candidates in order of their position in the content.
    """
    if not isinstance(content, str) or not content:
        return []
    states = _DEFAULT_TASK_STATES if task_states is None else tuple(task_states)

    candidates = (
        _annotation_candidates(content)
        + _task_candidates(content, states)
        + _reference_candidates(content)
    )
    # sorted() is stable, so candidates sharing an offset keep discovery order
    return sorted(candidates, key=lambda prop: prop.offset)


def format_property(name: str, value: str, weight: int = 2) -> str:
    """Render a property as the line annotation that parses back to it."""
    colons = ":" * weight
    if is_tag_name(name):
        return f"{TAG_NAME}{colons}{name[len(TAG_PREFIX):]}"
    return f"{name}{colons}{value}"


def upsert_annotation(content: str, name: str, value: str, weight: int = 2) -> str:
    """Write ``name``'s annotation into ``content``.

    The first existing annotation for ``name`` (bracketed or line form) is
    rewritten in place; otherwise the annotation is appended on its own
    line. Tags are only appended when the content does not carry them yet.
    """
    content = content or ""
    annotation = format_property(name, value, weight)

    if is_tag_name(name):
        label = re.escape(name[len(TAG_PREFIX):])
        existing = re.compile(
            r"(?:^|(?<=\s)|(?<=\{))" + TAG_NAME + r":{2,}" + label + r"(?![\w./\-])",
            re.MULTILINE,
        )
        if existing.search(content):
            return content
    else:
        escaped = re.escape(name)
        bracket = re.compile(r"\{" + escaped + r":{2,}[^{}\n]+\}")
        match = bracket.search(content)
        if match:
            return content[:match.start()] + "{" + annotation + "}" + content[match.end():]
        line = re.compile(r"(?:^|(?<=\s))" + escaped + r":{2,}.*$", re.MULTILINE)
        match = line.search(content)
        if match:
            return content[:match.start()] + annotation + content[match.end():]

    if not re.match(_LINE_NAME, name):
        annotation = "{" + annotation + "}"
    if not content:
        return annotation
    separator = "" if content.endswith("\n") else "\n"
    return f"{content}{separator}{annotation}"
