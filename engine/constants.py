"""Protocol constants shared by the state engine and polls."""

from functools import lru_cache

from domainobjs import BLANK_LEAF_PUB_KEY, StateLeaf

STATE_TREE_DEPTH = 10
STATE_TREE_ARITY = 5
STATE_TREE_SUBDEPTH = 2
MESSAGE_TREE_ARITY = 5
VOTE_OPTION_TREE_ARITY = 5

DEACT_KEYS_TREE_DEPTH = 10
DEACT_KEYS_TREE_ARITY = 5
DEACT_MESSAGE_INIT_HASH = 8370432830353022751713833565135785980866757267633941821328460903436894336785

# encryption public key recorded for top-up messages
TOPUP_PAD_KEY = BLANK_LEAF_PUB_KEY


def blank_state_leaf() -> StateLeaf:
    return StateLeaf.gen_blank_leaf()


@lru_cache(maxsize=1)
def blank_state_leaf_hash() -> int:
    return blank_state_leaf().hash()
