# =============================================================================
# pos_core/ui/offline_indicator.py
# Reusable UI Component for Connectivity and Sync Status
# Shows the online badge, pending queue, manual sync and dead letters
# =============================================================================

import streamlit as st
from typing import Optional

from pos_core.errors import ErrorContext
from pos_core.offline import OfflineRuntime, SyncOutcome, records_to_dataframe

OUTCOME_KEY = "_pos_last_sync_outcome"


def format_outcome(outcome: SyncOutcome) -> str:
    """One-line summary of a sync pass for the outcome banner."""
    if outcome.processed_count == 0 and outcome.failed_count == 0:
        return "Nothing to sync"
    text = f"Synced {outcome.processed_count} queued action(s)"
    if outcome.failed_count:
        text += f", {outcome.failed_count} failed"
    if outcome.dropped_ids:
        text += f", {len(outcome.dropped_ids)} moved to review"
    return text


def render_sync_outcome(outcome: Optional[SyncOutcome]) -> None:
    if outcome is None:
        return
    message = format_outcome(outcome)
    if outcome.succeeded:
        st.success(f"✅ {message}")
    else:
        st.warning(f"⚠️ {message}")


def render_dead_letters(runtime: OfflineRuntime) -> None:
    """List exhausted mutations with retry/discard actions."""
    if runtime.dead_letter_count() == 0:
        return

    dead_letters = runtime.run_blocking(runtime.list_dead_letters())
    with st.expander(f"🗂️ {len(dead_letters)} action(s) need review", expanded=False):
        st.dataframe(records_to_dataframe(dead_letters), use_container_width=True)

        changed = False
        for letter in dead_letters:
            col1, col2, col3 = st.columns([3, 1, 1])
            with col1:
                st.caption(f"{letter.record.kind} · {letter.id[:8]} · {letter.last_error or 'no error recorded'}")
            with col2:
                if st.button("Retry", key=f"retry_{letter.id}"):
                    with ErrorContext("Retrying queued action"):
                        runtime.run_blocking(runtime.retry_dead_letter(letter.id))
                        changed = True
            with col3:
                if st.button("Discard", key=f"discard_{letter.id}"):
                    with ErrorContext("Discarding queued action"):
                        runtime.run_blocking(runtime.discard_dead_letter(letter.id))
                        changed = True

    # Outside ErrorContext: st.rerun() works by raising
    if changed:
        st.rerun()


def render_offline_indicator(runtime: OfflineRuntime, show_dead_letters: bool = True) -> None:
    """
    Render the connectivity badge and sync controls.

    Online: a small "Online" badge, plus the pending count if anything is queued.
    Offline: a warning with the pending count.
    The Sync Now button is shown while online with pending actions, and the
    result of the last manual pass is kept in session state for the banner.

    Args:
        runtime: The process' offline runtime
        show_dead_letters: Whether to list exhausted actions for review
    """
    pending = runtime.pending_count()

    if runtime.connectivity.is_offline:
        st.warning(
            "📴 Offline mode"
            + (f" · {pending} action(s) waiting to sync" if pending else "")
        )
    else:
        col1, col2 = st.columns([3, 1])
        with col1:
            badge = "🟢 Online"
            if pending:
                badge += f" · {pending} pending"
            st.markdown(badge)
        with col2:
            if pending and st.button(
                "🔄 Sync Now",
                key="pos_sync_now",
                disabled=runtime.coordinator.is_syncing,
            ):
                with ErrorContext("Syncing queued actions"):
                    with st.spinner("Syncing..."):
                        st.session_state[OUTCOME_KEY] = runtime.sync_now()

    render_sync_outcome(st.session_state.get(OUTCOME_KEY))

    if show_dead_letters:
        render_dead_letters(runtime)
