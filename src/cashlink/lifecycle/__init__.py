"""Link lifecycle — state guards and claim deduplication."""

from cashlink.lifecycle.claims import ClaimRegistry
from cashlink.lifecycle.state_machine import LinkStateMachine
