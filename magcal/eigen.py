"""
Eigen-Sort

Canonical ordering for symmetric eigendecompositions. Every consumer of a
decomposition (RANSAC center/axis extraction, soft-iron derivation) goes
through eig_sort so that eigenvalue i always pairs with column i of the
eigenvector matrix in ascending order.
"""

import numpy as np
from typing import Tuple


def eig_sort(eigenvalues: np.ndarray,
             eigenvectors: np.ndarray,
             canonicalize: bool = True) -> Tuple[np.ndarray, np.ndarray]:
    """
    Sort an eigendecomposition by ascending eigenvalue.

    The sort is stable: equal eigenvalues keep their incoming order.
    Eigenvector columns are permuted exactly like their eigenvalues.

    Decomposition routines may return any eigenvector negated. With
    canonicalize=True each column whose diagonal entry is negative is
    flipped, so the returned rotation has a non-negative diagonal. A column
    with a zero diagonal entry is signed by its first nonzero entry instead. The
    soft-iron matrix R D R^T is the same for either sign, only R itself
    becomes reproducible. With canonicalize=False signs are left untouched.

    Args:
        eigenvalues: Length-n vector, or n x n matrix with eigenvalues on the diagonal
        eigenvectors: n x n matrix, one eigenvector per column
        canonicalize: Apply the non-negative diagonal sign rule

    Returns:
        (w, V): sorted eigenvalues (same shape as given) and eigenvectors.
        The inputs are not modified.
    """
    V = np.array(eigenvectors, dtype=float)
    w = np.array(eigenvalues, dtype=float)

    if V.ndim != 2 or V.shape[0] != V.shape[1]:
        raise ValueError(f"eigenvectors must be a square matrix, got shape {V.shape}")
    n = V.shape[0]

    as_diagonal = w.ndim == 2
    if as_diagonal:
        if w.shape != (n, n):
            raise ValueError(f"eigenvalue matrix must be {n}x{n}, got shape {w.shape}")
        values = np.diag(w).copy()
    elif w.shape == (n,):
        values = w
    else:
        raise ValueError(f"expected {n} eigenvalues, got shape {w.shape}")

    order = np.argsort(values, kind='stable')
    values = values[order]
    V = V[:, order]

    if canonicalize:
        for j in range(n):
            V[:, j] *= _sign_of(V[:, j], j)

    if as_diagonal:
        return np.diag(values), V
    return values, V


def _sign_of(column: np.ndarray, j: int) -> float:
    """-1 if column j must be flipped: by its diagonal entry, else its first nonzero entry."""
    pivot = column[j]
    if pivot == 0:
        nonzero = np.flatnonzero(column)
        if nonzero.size == 0:
            return 1.0
        pivot = column[nonzero[0]]
    return -1.0 if pivot < 0 else 1.0
