"""
Plain-text QP dumps for offline regression replay.

Layout (one numeric row per matrix row, entries separated by spaces):

    size: <n> nc: <numIneq>
    Q:
    ...
    f:
    ...

    A:
    ...
    b:
    ...

    x:
    ...

"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, TextIO

import numpy as np

_BLOCKS = ("Q", "f", "A", "b", "x")


@dataclass
class QPDump:
    Q: np.ndarray
    f: np.ndarray
    A: np.ndarray
    b: np.ndarray
    x: np.ndarray

    @property
    def size(self) -> int:
        return int(self.f.size)

    @property
    def num_ineq(self) -> int:
        return int(self.A.shape[0])


def _write_matrix(fp: TextIO, M: np.ndarray, fmt: str) -> None:
    for row in np.atleast_2d(M):
        fp.write(" ".join(fmt % v for v in row) + "\n")


def _write_vector(fp: TextIO, v: np.ndarray, fmt: str) -> None:
    fp.write(" ".join(fmt % e for e in np.ravel(v)) + "\n")


def write_qp(path, Q, f, A, b, x, fmt: str = "%g") -> bool:
    """
    Write (Q, f, A, b, x) to `path`. I/O errors are logged and swallowed;
    returns True when the file was written.
    """
    Q = np.asarray(Q, float)
    A = np.asarray(A, float)
    try:
        with open(path, "w") as fp:
            fp.write(f"size: {Q.shape[1]} nc: {A.shape[0]}\n")
            fp.write("Q:\n")
            if Q.size:
                _write_matrix(fp, Q, fmt)
            fp.write("f:\n")
            _write_vector(fp, f, fmt)
            fp.write("\nA:\n")
            if A.size:
                _write_matrix(fp, A, fmt)
            fp.write("b:\n")
            _write_vector(fp, b, fmt)
            fp.write("\nx:\n")
            _write_vector(fp, x, fmt)
            fp.write("\n")
    except OSError as e:
        logging.warning(f"QP dump to {path} failed: {e}")
        return False
    return True


def read_qp(path) -> QPDump:
    """Parse a dump written by `write_qp`."""
    with open(path) as fp:
        lines = [ln.strip() for ln in fp]

    header = lines[0].split()
    if len(header) != 4 or header[0] != "size:" or header[2] != "nc:":
        raise ValueError(f"{path}: bad header {lines[0]!r}")
    n, nc = int(header[1]), int(header[3])

    rows: Dict[str, List[List[float]]] = {k: [] for k in _BLOCKS}
    key = None
    for ln in lines[1:]:
        if ln.endswith(":") and ln[:-1] in rows:
            key = ln[:-1]
            continue
        if not ln:
            continue
        if key is None:
            raise ValueError(f"{path}: data before first block label")
        rows[key].append([float(t) for t in ln.split()])

    def _vec(k: str, m: int) -> np.ndarray:
        v = np.array([e for r in rows[k] for e in r], float)
        if v.size != m:
            raise ValueError(f"{path}: block {k} has {v.size} entries, expected {m}")
        return v

    Q = _vec("Q", n * n).reshape(n, n)
    A = _vec("A", nc * n).reshape(nc, n)
    return QPDump(Q=Q, f=_vec("f", n), A=A, b=_vec("b", nc), x=_vec("x", n))
