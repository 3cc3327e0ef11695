"""Change detection between two consecutive snapshots.

``detect`` is a pure function of the previous and current snapshot. Keeping
the previous snapshot an explicit argument lets the poll loop own the only
piece of retained state and makes every rule testable without a loop.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from .models import (
    UNKNOWN_MODEL,
    AgentState,
    AgentStatus,
    ChangeSet,
    LifecycleChange,
    ModelSwitch,
    Snapshot,
    TokenDelta,
    ToolObservation,
)


def detect(previous: Snapshot | None, current: Snapshot) -> ChangeSet:
    """Compute the categorized delta from ``previous`` to ``current``.

    Args:
        previous: Snapshot from the prior tick, or None on the first tick.
        current: Snapshot from this tick.

    Returns:
        ChangeSet with lifecycle changes, model switches, token deltas and
        tool observations. ``detect(s, s)`` is always empty.
    """
    previous_agents = previous.agents if previous is not None else {}
    timestamp = current.timestamp

    lifecycle: list[LifecycleChange] = []
    switches: list[ModelSwitch] = []
    deltas: list[TokenDelta] = []
    tools: list[ToolObservation] = []

    for agent_id in sorted(current.agents):
        cur = current.agents[agent_id]
        prev = previous_agents.get(agent_id)

        lifecycle_change = _lifecycle_change(prev, cur, timestamp)
        if lifecycle_change is not None:
            lifecycle.append(lifecycle_change)

        if prev is not None:
            switch = _model_switch(prev, cur, timestamp)
            if switch is not None:
                switches.append(switch)

            delta = _token_delta(prev, cur, timestamp)
            if delta is not None:
                deltas.append(delta)

        previous_tools = prev.tools_used if prev is not None else frozenset()
        tools.extend(
            ToolObservation(agent_id=agent_id, tool_name=name, timestamp=timestamp)
            for name in sorted(cur.tools_used - previous_tools)
        )

    for agent_id in sorted(set(previous_agents) - set(current.agents)):
        prev = previous_agents[agent_id]
        if prev.status is AgentStatus.ENDED:
            continue
        lifecycle.append(
            LifecycleChange(
                agent_id=agent_id,
                previous_state=prev.status,
                current_state=AgentStatus.ENDED,
                timestamp=timestamp,
            )
        )

    return ChangeSet(
        lifecycle_changes=tuple(lifecycle),
        model_switches=tuple(switches),
        token_deltas=tuple(deltas),
        tool_observations=tuple(tools),
    )


def carry_known_models(previous: Snapshot | None, current: Snapshot) -> Snapshot:
    """Carry each agent's last known model from ``previous`` into ``current``.

    An agent whose model is ``"unknown"`` in ``current`` keeps the model it
    was last reported with, so a later switch can name it as the previous
    model. Returns ``current`` itself when nothing needs carrying.
    """
    if previous is None:
        return current

    carried: list[AgentState] = []
    for agent in current.agents.values():
        prev = previous.agents.get(agent.agent_id)
        if prev is None or agent.known_model != UNKNOWN_MODEL:
            continue
        if prev.known_model == UNKNOWN_MODEL:
            continue
        carried.append(replace(agent, last_known_model=prev.known_model))

    if not carried:
        return current

    agents = dict(current.agents)
    agents.update((agent.agent_id, agent) for agent in carried)
    return Snapshot(timestamp=current.timestamp, agents=agents)


def _lifecycle_change(
    prev: AgentState | None, cur: AgentState, timestamp: datetime
) -> LifecycleChange | None:
    if prev is None:
        return LifecycleChange(
            agent_id=cur.agent_id, previous_state=None, current_state=cur.status, timestamp=timestamp
        )
    if prev.status is not cur.status:
        return LifecycleChange(
            agent_id=cur.agent_id,
            previous_state=prev.status,
            current_state=cur.status,
            timestamp=timestamp,
        )
    return None


def _model_switch(prev: AgentState, cur: AgentState, timestamp: datetime) -> ModelSwitch | None:
    previous_model = prev.known_model
    # A first assignment and a drop back to "unknown" are not switches
    if UNKNOWN_MODEL in (previous_model, cur.current_model):
        return None
    if previous_model == cur.current_model:
        return None
    return ModelSwitch(
        agent_id=cur.agent_id,
        previous_model=previous_model,
        current_model=cur.current_model,
        timestamp=timestamp,
    )


def _token_delta(prev: AgentState, cur: AgentState, timestamp: datetime) -> TokenDelta | None:
    delta = cur.total_tokens - prev.total_tokens
    if delta == 0:
        return None
    return TokenDelta(
        agent_id=cur.agent_id,
        previous_tokens=prev.total_tokens,
        current_tokens=cur.total_tokens,
        delta=delta,
        input_tokens=cur.input_tokens,
        output_tokens=cur.output_tokens,
        timestamp=timestamp,
    )
