from typing import NamedTuple

# SEE: https://mimesniff.spec.whatwg.org/#identifying-a-resource-with-an-unknown-mime-type

SNIFF_LENGTH: int = 512

# Tags that make a payload HTML when they start it, they must be followed by
# a space or `>`.
HTML_TAGS: tuple[bytes, ...] = (
	b"<!DOCTYPE HTML",
	b"<HTML",
	b"<HEAD",
	b"<SCRIPT",
	b"<IFRAME",
	b"<H1",
	b"<DIV",
	b"<FONT",
	b"<TABLE",
	b"<A",
	b"<STYLE",
	b"<TITLE",
	b"<B",
	b"<BODY",
	b"<BR",
	b"<P",
	b"<!--",
)


class Signature(NamedTuple):
	prefix: bytes
	contentType: str
	# Bytes that are ignored, when the prefix is matched at a later offset
	offset: int = 0
	# An optional second prefix, expected at `offset`
	suffix: bytes = b""


SIGNATURES: tuple[Signature, ...] = (
	Signature(b"<?xml", "text/xml; charset=utf-8"),
	Signature(b"%PDF-", "application/pdf"),
	Signature(b"%!PS-Adobe-", "application/postscript"),
	Signature(b"\xfe\xff", "text/plain; charset=utf-16be"),
	Signature(b"\xff\xfe", "text/plain; charset=utf-16le"),
	Signature(b"\xef\xbb\xbf", "text/plain; charset=utf-8"),
	Signature(b"\x00\x00\x01\x00", "image/x-icon"),
	Signature(b"\x00\x00\x02\x00", "image/x-icon"),
	Signature(b"BM", "image/bmp"),
	Signature(b"GIF87a", "image/gif"),
	Signature(b"GIF89a", "image/gif"),
	Signature(b"RIFF", "image/webp", 8, b"WEBPVP"),
	Signature(b"\x89PNG\x0d\x0a\x1a\x0a", "image/png"),
	Signature(b"\xff\xd8\xff", "image/jpeg"),
	Signature(b"RIFF", "audio/wave", 8, b"WAVE"),
	Signature(b"FORM", "audio/aiff", 8, b"AIFF"),
	Signature(b".snd", "audio/basic"),
	Signature(b"OggS\x00", "application/ogg"),
	Signature(b"MThd\x00\x00\x00\x06", "audio/midi"),
	Signature(b"ID3", "audio/mpeg"),
	Signature(b"RIFF", "video/avi", 8, b"AVI "),
	Signature(b"\x1a\x45\xdf\xa3", "video/webm"),
	Signature(b"Rar!\x1a\x07\x00", "application/x-rar-compressed"),
	Signature(b"Rar!\x1a\x07\x01\x00", "application/x-rar-compressed"),
	Signature(b"\x1f\x8b\x08", "application/x-gzip"),
	Signature(b"PK\x03\x04", "application/zip"),
	Signature(b"\x00asm", "application/wasm"),
	Signature(b"wOFF", "font/woff"),
	Signature(b"wOF2", "font/woff2"),
)

# Bytes that never appear in text, as in the "binary data byte" definition
BINARY_BYTES: frozenset[int] = frozenset(
	(*range(0x00, 0x09), 0x0B, *range(0x0E, 0x1B), *range(0x1C, 0x20))
)

WHITESPACE: bytes = b"\t\n\x0c\r "


def isHTML(data: bytes) -> bool:
	head = data.lstrip(WHITESPACE)
	for tag in HTML_TAGS:
		n = len(tag)
		if len(head) > n and head[:n].upper() == tag and head[n] in b" >":
			return True
	return False


def sniffContentType(data: bytes) -> str:
	"""Guesses the content type of a payload from its first bytes, always
	returning a valid MIME type, defaulting to `application/octet-stream`."""
	data = data[:SNIFF_LENGTH]
	if isHTML(data):
		return "text/html; charset=utf-8"
	stripped = data.lstrip(WHITESPACE)
	for signature in SIGNATURES:
		subject = stripped if signature.prefix == b"<?xml" else data
		if not subject.startswith(signature.prefix):
			continue
		elif signature.suffix and not subject.startswith(
			signature.suffix, signature.offset
		):
			continue
		return signature.contentType
	if not any(_ in BINARY_BYTES for _ in data):
		return "text/plain; charset=utf-8"
	return "application/octet-stream"


# EOF
