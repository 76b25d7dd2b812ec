"""
MACI off-chain processing engine: signup registry, polls, batch message
processing, key deactivation and tallying.
"""

from .constants import (
    STATE_TREE_DEPTH,
    STATE_TREE_ARITY,
    STATE_TREE_SUBDEPTH,
    MESSAGE_TREE_ARITY,
    VOTE_OPTION_TREE_ARITY,
    DEACT_KEYS_TREE_DEPTH,
    DEACT_KEYS_TREE_ARITY,
    DEACT_MESSAGE_INIT_HASH,
    TOPUP_PAD_KEY,
    blank_state_leaf,
    blank_state_leaf_hash,
)
from .packing import (
    pack_process_message_small_vals,
    unpack_process_message_small_vals,
    pack_tally_votes_small_vals,
    unpack_tally_votes_small_vals,
    pack_subsidy_small_vals,
    gen_process_vk_sig,
    gen_deactivation_vk_sig,
    gen_tally_vk_sig,
    gen_subsidy_vk_sig,
    gen_new_key_generation_vk_sig,
    gen_tally_result_commitment,
)
from .state import MaciState, ProcessingToken, StateSnapshot, IDLE
from .poll import Poll, ProcessingStatus, DeactivatedKeyEvent, NewKeyGenerationInputs

__version__ = "1.0.0"

__all__ = [
    'MaciState',
    'Poll',
    'ProcessingToken',
    'ProcessingStatus',
    'StateSnapshot',
    'IDLE',
    'DeactivatedKeyEvent',
    'NewKeyGenerationInputs',
    'STATE_TREE_DEPTH',
    'STATE_TREE_ARITY',
    'STATE_TREE_SUBDEPTH',
    'MESSAGE_TREE_ARITY',
    'VOTE_OPTION_TREE_ARITY',
    'DEACT_KEYS_TREE_DEPTH',
    'DEACT_KEYS_TREE_ARITY',
    'DEACT_MESSAGE_INIT_HASH',
    'TOPUP_PAD_KEY',
    'blank_state_leaf',
    'blank_state_leaf_hash',
    'pack_process_message_small_vals',
    'unpack_process_message_small_vals',
    'pack_tally_votes_small_vals',
    'unpack_tally_votes_small_vals',
    'pack_subsidy_small_vals',
    'gen_process_vk_sig',
    'gen_deactivation_vk_sig',
    'gen_tally_vk_sig',
    'gen_subsidy_vk_sig',
    'gen_new_key_generation_vk_sig',
    'gen_tally_result_commitment',
]
