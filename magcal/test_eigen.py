"""Tests for eigendecomposition ordering."""

import numpy as np
import pytest

from magcal.eigen import eig_sort


def test_sorts_vector_ascending_and_permutes_columns():
    w = np.array([3.0, 1.0, 2.0])
    V = np.array([
        [0.0, 1.0, 0.0],
        [0.0, 0.0, 1.0],
        [1.0, 0.0, 0.0],
    ])

    w_sorted, V_sorted = eig_sort(w, V)

    np.testing.assert_array_equal(w_sorted, [1.0, 2.0, 3.0])
    np.testing.assert_array_equal(V_sorted[:, 0], V[:, 1])
    np.testing.assert_array_equal(V_sorted[:, 1], V[:, 2])
    np.testing.assert_array_equal(V_sorted[:, 2], V[:, 0])


def test_diagonal_matrix_input_returns_diagonal_matrix():
    w = np.diag([5.0, -1.0, 0.5])
    V = np.eye(3)

    w_sorted, V_sorted = eig_sort(w, V)

    assert w_sorted.shape == (3, 3)
    np.testing.assert_array_equal(np.diag(w_sorted), [-1.0, 0.5, 5.0])
    np.testing.assert_array_equal(V_sorted, np.eye(3)[:, [1, 2, 0]])


def test_pairing_preserved_for_symmetric_matrix():
    rng = np.random.default_rng(3)
    B = rng.normal(size=(4, 4))
    S = B + B.T
    w, V = np.linalg.eigh(S)
    shuffle = [2, 0, 3, 1]

    w_sorted, V_sorted = eig_sort(w[shuffle], V[:, shuffle])

    assert np.all(np.diff(w_sorted) >= 0)
    for i in range(4):
        np.testing.assert_allclose(S @ V_sorted[:, i], w_sorted[i] * V_sorted[:, i], atol=1e-9)


def test_equal_eigenvalues_keep_incoming_order():
    w = np.array([2.0, 1.0, 2.0])
    V = np.array([
        [1.0, 0.0, 0.0],
        [0.0, 0.0, 1.0],
        [0.0, 1.0, 0.0],
    ])

    _, V_sorted = eig_sort(w, V, canonicalize=False)

    np.testing.assert_array_equal(V_sorted[:, 1], V[:, 0])
    np.testing.assert_array_equal(V_sorted[:, 2], V[:, 2])


def test_canonical_signs():
    w = np.array([1.0, 2.0, 3.0])
    V = -np.eye(3)

    _, V_sorted = eig_sort(w, V)
    np.testing.assert_array_equal(V_sorted, np.eye(3))

    _, V_raw = eig_sort(w, V, canonicalize=False)
    np.testing.assert_array_equal(V_raw, -np.eye(3))


def test_inputs_not_modified():
    w = np.array([3.0, 1.0, 2.0])
    V = -np.eye(3)
    w_before, V_before = w.copy(), V.copy()

    eig_sort(w, V)

    np.testing.assert_array_equal(w, w_before)
    np.testing.assert_array_equal(V, V_before)


def test_already_sorted_is_identity():
    w = np.array([0.5, 1.0, 4.0])
    V = np.eye(3)

    w_sorted, V_sorted = eig_sort(w, V)

    np.testing.assert_array_equal(w_sorted, w)
    np.testing.assert_array_equal(V_sorted, V)


@pytest.mark.parametrize("w, V", [
    (np.ones(3), np.eye(2)),
    (np.ones(2), np.eye(3)),
    (np.ones((2, 2)), np.eye(3)),
    (np.ones(3), np.ones((3, 2))),
])
def test_shape_mismatch_rejected(w, V):
    with pytest.raises(ValueError):
        eig_sort(w, V)


def test_sorting_twice_equals_sorting_once():
    rng = np.random.default_rng(8)
    B = rng.normal(size=(3, 3))
    w, V = np.linalg.eigh(B + B.T)
    w, V = w[::-1], -V[:, ::-1]

    once = eig_sort(w, V)
    twice = eig_sort(*once)

    np.testing.assert_array_equal(twice[0], once[0])
    np.testing.assert_array_equal(twice[1], once[1])


def test_zero_diagonal_signed_by_first_nonzero_entry():
    w = np.array([1.0, 2.0, 3.0])
    V = np.array([
        [0.0, -1.0, 0.0],
        [1.0, 0.0, 0.0],
        [0.0, 0.0, 1.0],
    ])

    _, V_sorted = eig_sort(w, V)
    _, V_negated = eig_sort(w, -V)

    np.testing.assert_array_equal(V_sorted[:, 1], [1.0, 0.0, 0.0])
    np.testing.assert_array_equal(V_sorted, V_negated)
