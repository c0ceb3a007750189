"""Output formatters for the squads command line."""

import dataclasses
import json
from enum import Enum
from typing import Optional

from solders.pubkey import Pubkey

from .proposal import effective_state, is_stale
from .types import Multisig, Proposal

DIVIDER = "─" * 70


def format_timelock(seconds: int) -> str:
    """Format timelock duration for display."""
    if seconds == 0:
        return "None (0 seconds)"
    if seconds < 60:
        return f"{seconds} seconds"
    if seconds < 3600:
        return f"{seconds // 60} minutes"
    if seconds < 86400:
        return f"{seconds / 3600:.1f} hours"
    return f"{seconds / 86400:.1f} days"


def to_dict(obj):
    """Convert account dataclasses into JSON-serializable values."""
    if dataclasses.is_dataclass(obj):
        return {f.name: to_dict(getattr(obj, f.name)) for f in dataclasses.fields(obj) if f.repr}
    elif isinstance(obj, (list, tuple)):
        return [to_dict(item) for item in obj]
    elif isinstance(obj, dict):
        return {k: to_dict(v) for k, v in obj.items()}
    elif isinstance(obj, Pubkey):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.name
    elif isinstance(obj, bytes):
        return obj.hex()
    else:
        return obj


def format_json(obj, pretty: bool = True) -> str:
    return json.dumps(to_dict(obj), indent=2 if pretty else None)


def state_display(proposal: Proposal, multisig: Multisig) -> str:
    state = effective_state(proposal, multisig)
    if state is None:
        return f"Stale (stored {proposal.state.name.title()})"
    return state.name.title()


def format_multisig_table(multisig: Multisig, address: str) -> str:
    """Format a multisig account as a table."""
    lines = []

    lines.append(DIVIDER)
    lines.append(f"MULTISIG: {address}")
    lines.append(DIVIDER)
    lines.append(f"Threshold:          {multisig.threshold} of {multisig.num_voters()} voters")
    lines.append(f"Timelock:           {format_timelock(multisig.time_lock)}")
    lines.append(f"Timelock (seconds): {multisig.time_lock}")
    lines.append(f"Create Key:         {multisig.create_key}")
    authority = "None (autonomous)" if multisig.config_authority is None else multisig.config_authority
    lines.append(f"Config Authority:   {authority}")
    if multisig.rent_collector is not None:
        lines.append(f"Rent Collector:     {multisig.rent_collector}")
    lines.append(f"Transaction Index:  {multisig.transaction_index}")
    lines.append(f"Stale Index:        {multisig.stale_transaction_index}")

    lines.append("")
    lines.append("Members:")
    for member in multisig.members:
        lines.append(f"  {member.key}")
        lines.append(f"    Permissions: {', '.join(member.permission_names())}")

    lines.append(DIVIDER)

    return "\n".join(lines)


def format_proposal_table(proposal: Proposal, multisig: Multisig, address: Optional[str] = None) -> str:
    """Format a proposal with its vote tallies as a table."""
    lines = []

    lines.append(DIVIDER)
    lines.append(f"PROPOSAL #{proposal.transaction_index}" + (f": {address}" if address else ""))
    lines.append(DIVIDER)
    lines.append(f"Multisig:           {proposal.multisig}")
    lines.append(f"Status:             {state_display(proposal, multisig)}")
    if proposal.status.timestamp is not None:
        lines.append(f"Status Since:       {proposal.status.timestamp}")
    lines.append(f"Approvals:          {len(proposal.approved)} / {multisig.threshold}")
    lines.append(f"Rejections:         {len(proposal.rejected)} / {multisig.cutoff()}")
    lines.append(f"Cancellations:      {len(proposal.cancelled)} / {multisig.threshold}")

    for title, voters in (("Approved", proposal.approved), ("Rejected", proposal.rejected),
                          ("Cancelled", proposal.cancelled)):
        if voters:
            lines.append("")
            lines.append(f"{title}:")
            for voter in voters:
                lines.append(f"  {voter}")

    lines.append(DIVIDER)

    return "\n".join(lines)


def format_proposal_json(proposal: Proposal, multisig: Multisig, address: Optional[str] = None) -> str:
    data = to_dict(proposal)
    data["address"] = address
    data["stale"] = is_stale(proposal, multisig)
    data["effective_state"] = state_display(proposal, multisig)
    return json.dumps(data, indent=2)


def format_pending_table(proposals: list[Proposal], multisig: Multisig, member: str) -> str:
    """Format the proposals awaiting a member's vote."""
    if not proposals:
        return f"No proposals awaiting a vote from {member}"

    lines = [DIVIDER, f"PENDING FOR: {member}", DIVIDER]
    for p in proposals:
        lines.append(
            f"  #{p.transaction_index:<6} approvals {len(p.approved)}/{multisig.threshold}"
            f"  rejections {len(p.rejected)}/{multisig.cutoff()}"
        )
    lines.append(DIVIDER)
    return "\n".join(lines)


def format_addresses_table(addresses: dict[str, tuple[Pubkey, int]]) -> str:
    """Format derived addresses as ``name  address  (bump)`` rows."""
    width = max(len(name) for name in addresses) + 2
    lines = [DIVIDER]
    for name, (address, bump) in addresses.items():
        lines.append(f"{name + ':':<{width}} {address}  (bump {bump})")
    lines.append(DIVIDER)
    return "\n".join(lines)


def format_addresses_json(addresses: dict[str, tuple[Pubkey, int]]) -> str:
    return json.dumps(
        {name: {"address": str(address), "bump": bump} for name, (address, bump) in addresses.items()},
        indent=2,
    )
