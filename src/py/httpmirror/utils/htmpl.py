from typing import Callable, Iterable, Iterator, NamedTuple, Union, cast

from mypy_extensions import KwArg, VarArg

# --
# A small HTML builder: `H.a("home", href="/")` creates nodes, which
# `html()` serializes as a document.

VOID_ELEMENTS: frozenset[str] = frozenset("br hr img input link meta".split())

ESCAPED = str.maketrans(
	{"&": "&amp;", "<": "&lt;", ">": "&gt;", '"': "&quot;", "'": "&#x27;"}
)

TNodeContent = Union["Node", str, bool, float, int]
TAttributeContent = str | bool | float | int | None


def escape(text: str) -> str:
	return text.translate(ESCAPED)


class Node(NamedTuple):
	name: str
	children: tuple[TNodeContent, ...] = ()
	attributes: tuple[tuple[str, TAttributeContent], ...] = ()

	def iterHTML(self) -> Iterator[str]:
		attrs = "".join(
			f" {k}" if v is None else f' {k}="{escape(str(v))}"'
			for k, v in self.attributes
		)
		yield f"<{self.name}{attrs}>"
		if self.name not in VOID_ELEMENTS:
			for child in self.children:
				if isinstance(child, Node):
					yield from child.iterHTML()
				else:
					yield escape(str(child))
			yield f"</{self.name}>"

	def __str__(self) -> str:
		return "".join(self.iterHTML())


NodeFactory = Callable[
	[VarArg(TNodeContent | Iterable[TNodeContent]), KwArg(TAttributeContent)],
	Node,
]


def element(name: str) -> NodeFactory:
	"""Returns a factory of `name` nodes, taking children as arguments (lists
	being flattened) and attributes as keywords, `_` standing for `class`."""

	def create(
		*children: TNodeContent | Iterable[TNodeContent], **attributes: TAttributeContent
	) -> Node:
		content: list[TNodeContent] = []
		for child in children:
			if isinstance(child, (list, tuple)):
				content.extend(child)
			else:
				content.append(cast(TNodeContent, child))
		return Node(
			name,
			tuple(content),
			tuple(("class" if k == "_" else k, v) for k, v in attributes.items()),
		)

	create.__name__ = name
	return cast(NodeFactory, create)


class Markup:
	"""Gives access to the node factories as attributes."""

	TAGS: tuple[str, ...] = tuple(
		"a body code dd dl dt h1 head html link main meta p style title".split()
	)

	def __init__(self) -> None:
		self.factories: dict[str, NodeFactory] = {_: element(_) for _ in self.TAGS}

	def __getattr__(self, name: str) -> NodeFactory:
		try:
			return self.__dict__["factories"][name]
		except KeyError as e:
			raise AttributeError(f"Unsupported tag: {name}") from e


H: Markup = Markup()


def html(*nodes: Node, doctype: str | None = "html") -> str:
	"""Serializes the nodes as an HTML document."""
	prefix: str = f"<!DOCTYPE {doctype}>\n" if doctype else ""
	return prefix + "".join(_ for node in nodes for _ in node.iterHTML())


# EOF
