"""Merkle tree substrate: incremental trees, accumulator queues and the nullifier tree."""

from .incremental import IncrementalTree, MerklePath, default_hash_func
from .accqueue import AccQueue, calc_depth_from_num_leaves
from .smt import SparseMerkleTree, SMTFindResult, SMTInsertResult

__all__ = [
    'IncrementalTree',
    'MerklePath',
    'default_hash_func',
    'AccQueue',
    'calc_depth_from_num_leaves',
    'SparseMerkleTree',
    'SMTFindResult',
    'SMTInsertResult',
]
