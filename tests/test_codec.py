import gzip
import threading
import zlib
from concurrent.futures import ThreadPoolExecutor

import pytest

from httpmirror.utils.codec import CodecError, CodecPool, Decompressor, Encoding


def decode(data: bytes) -> bytes:
	d = Decompressor()
	return (d.feed(data) or b"") + (d.flush() or b"")


def test_pool_recycles_compressors():
	pool = CodecPool()
	a = pool.acquire(Encoding.GZip)
	assert a.isAcquired
	assert pool.available(Encoding.GZip) == 0
	pool.release(a)
	assert not a.isAcquired
	assert pool.available(Encoding.GZip) == 1
	b = pool.acquire(Encoding.GZip)
	assert b is a
	assert pool.created == 1


def test_pool_grows_on_demand():
	pool = CodecPool()
	handles = [pool.acquire(Encoding.Deflate) for _ in range(3)]
	assert len({id(_) for _ in handles}) == 3
	assert pool.created == 3
	for _ in handles:
		pool.release(_)
	assert pool.available(Encoding.Deflate) == 3
	assert pool.available(Encoding.GZip) == 0


def test_pool_capacity_drops_extra_idle():
	pool = CodecPool(capacity=1)
	a = pool.acquire(Encoding.GZip)
	b = pool.acquire(Encoding.GZip)
	pool.release(a).release(b)
	assert pool.available(Encoding.GZip) == 1
	pool.clear()
	assert pool.available(Encoding.GZip) == 0


def test_double_release_fails():
	pool = CodecPool()
	a = pool.acquire(Encoding.GZip)
	pool.release(a)
	with pytest.raises(CodecError):
		pool.release(a)


def test_invalid_level_fails_at_construction():
	with pytest.raises(CodecError):
		CodecPool(42)


def test_unknown_encoding():
	pool = CodecPool(encodings=(Encoding.GZip,))
	with pytest.raises(CodecError):
		pool.acquire(Encoding.Deflate)
	with pytest.raises(CodecError):
		CodecPool(encodings=(Encoding.Identity,))


def test_gzip_output_is_gzip():
	pool = CodecPool()
	c = pool.acquire(Encoding.GZip)
	data = (c.feed(b"hello, world") or b"") + c.close()
	assert data[:2] == b"\x1f\x8b"
	assert gzip.decompress(data) == b"hello, world"


def test_deflate_output_is_zlib():
	pool = CodecPool()
	c = pool.acquire(Encoding.Deflate)
	data = (c.feed(b"hello, world") or b"") + c.close()
	assert zlib.decompress(data) == b"hello, world"
	assert decode(data) == b"hello, world"


def test_released_compressor_starts_fresh():
	pool = CodecPool()
	c = pool.acquire(Encoding.GZip)
	c.feed(b"discarded")
	pool.release(c)
	c = pool.acquire(Encoding.GZip)
	data = (c.feed(b"kept") or b"") + c.close()
	assert gzip.decompress(data) == b"kept"


def test_sync_flush_is_decodable():
	pool = CodecPool()
	c = pool.acquire(Encoding.GZip)
	head = (c.feed(b"first") or b"") + (c.flush() or b"")
	d = Decompressor()
	assert d.feed(head) == b"first"
	assert d.feed(c.close()) == b""
	assert c.isClosed
	assert c.close() == b""


def test_closed_compressor_rejects_feed():
	pool = CodecPool()
	c = pool.acquire(Encoding.Deflate)
	c.close()
	with pytest.raises(CodecError):
		c.feed(b"late")



def test_pool_under_concurrent_use():
	pool = CodecPool()
	lock = threading.Lock()
	held: set[int] = set()

	def work(index: int) -> int:
		encoding = (Encoding.GZip, Encoding.Deflate)[index % 2]
		for _ in range(200):
			handle = pool.acquire(encoding)
			assert handle.isAcquired
			with lock:
				assert id(handle) not in held, "Compressor handed out twice"
				held.add(id(handle))
			assert decode(handle.feed(b"data") + handle.close()) == b"data"
			with lock:
				held.discard(id(handle))
			pool.release(handle)
		return index

	with ThreadPoolExecutor(max_workers=8) as executor:
		assert sorted(executor.map(work, range(16))) == list(range(16))
	assert not held
	assert pool.created == pool.available(Encoding.GZip) + pool.available(
		Encoding.Deflate
	)
	assert pool.created <= 16


# EOF
