# output_sink.py
import sys


class OutputSink:
    """
    Line-oriented writer every solver narrates to.

    Subclasses only need to implement ``write``; ``write_line`` and
    ``start_section`` are built on top of it.
    """

    def write(self, text):
        raise NotImplementedError

    def write_line(self, text=""):
        self.write(f"{text}\n")

    def start_section(self, header):
        self.write_line()
        self.write_line(header)
        self.write_line("-" * max(len(header), 3))


class ConsoleSink(OutputSink):
    """Writes to a text stream, ``sys.stdout`` by default (looked up on every write)."""

    def __init__(self, stream=None):
        self.stream = stream

    def write(self, text):
        stream = self.stream if self.stream is not None else sys.stdout
        stream.write(text)


class BufferSink(OutputSink):
    """Collects everything in memory, handy for tests and for UIs that render later."""

    def __init__(self):
        self._chunks = []

    def write(self, text):
        self._chunks.append(str(text))

    def getvalue(self):
        return "".join(self._chunks)

    @property
    def lines(self):
        return self.getvalue().splitlines()

    def clear(self):
        self._chunks = []


class NullSink(OutputSink):
    def write(self, text):
        pass


def resolve_sink(sink):
    """Solvers accept ``sink=None``, which means: stay silent."""
    return NullSink() if sink is None else sink
