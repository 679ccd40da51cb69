"""
Streamlit Dashboard for Ledger Sync

The management surface for the people who keep the ledgers: trigger a
cycle, read what it decided, and correct the records the engine relies on.

DESIGN PRINCIPLES:
1. Everything shown comes from the mapping store or the cycle report
2. The engine's records are only changed through explicit actions
3. Clear error messages for misconfiguration
4. No hidden actions

The dashboard never edits ledger transactions itself. It can:
- Run a cycle now
- Unlink a linked transaction (manual correction)
- Add account links and monthly exchange rates
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

import streamlit as st

from ledgersync.audit import configure_logging
from ledgersync.config import get_settings, validate_all_settings
from ledgersync.loop import BackgroundLoop
from ledgersync.models.sync import (
    AccountLink,
    CompanyAccountLink,
    ExchangeRate,
    SyncStatus,
)
from ledgersync.orchestrator import (
    CycleAlreadyRunningError,
    CycleOrchestrator,
    create_app_components,
)
from ledgersync.services.storage import MappingStoreInterface


# Page configuration
st.set_page_config(
    page_title="Ledger Sync",
    page_icon="🔁",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
    .stButton>button {
        width: 100%;
        margin-top: 10px;
    }
    .big-number {
        font-size: 2.5em;
        font-weight: bold;
        color: #2c3e50;
    }
</style>
""", unsafe_allow_html=True)


@st.cache_resource
def get_event_loop() -> BackgroundLoop:
    """Loop shared by every session; the HTTP client and the DB engine are bound to it."""
    return BackgroundLoop()


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    return get_event_loop().run(coro)


@st.cache_resource
def get_components() -> tuple[CycleOrchestrator, MappingStoreInterface]:
    """Get or create application components (cached)."""
    settings = get_settings()
    configure_logging(settings.app.log_level)
    orchestrator, store, _ = create_app_components(settings)
    run_async(store.create_tables())
    return orchestrator, store


def format_amount(milliunits: Optional[int]) -> str:
    if milliunits is None:
        return ""
    return f"{Decimal(milliunits) / 1000:,.2f}"


def main():
    """Main application entry point."""
    try:
        orchestrator, store = get_components()
    except Exception as e:
        st.error(f"Failed to initialize: {e}")
        render_settings_page()
        return

    st.sidebar.title("🔁 Ledger Sync")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        [
            "▶️ Run Cycle",
            "📜 Decisions",
            "🧭 Watermarks",
            "🔗 Mappings",
            "🤝 Linked Transfers",
            "🏦 Account Links",
            "💱 Exchange Rates",
            "⚙️ Settings",
        ],
        index=0,
    )

    if page == "▶️ Run Cycle":
        render_run_page(orchestrator)
    elif page == "📜 Decisions":
        render_decisions_page(store)
    elif page == "🧭 Watermarks":
        render_watermarks_page(store)
    elif page == "🔗 Mappings":
        render_mappings_page(store)
    elif page == "🤝 Linked Transfers":
        render_linked_page(store)
    elif page == "🏦 Account Links":
        render_links_page(store)
    elif page == "💱 Exchange Rates":
        render_rates_page(store)
    elif page == "⚙️ Settings":
        render_settings_page()


def render_run_page(orchestrator: CycleOrchestrator):
    """Run a cycle and show its report."""
    st.title("▶️ Run Cycle")
    st.markdown(
        "Organization links run first, then the personal ledger against each organization."
    )

    if st.button("🔁 Run sync now", type="primary", disabled=orchestrator.is_running):
        with st.spinner("Syncing ledgers..."):
            try:
                st.session_state.last_report = run_async(orchestrator.run_cycle())
            except CycleAlreadyRunningError:
                st.warning("A cycle is already running. Try again when it has finished.")

    report = st.session_state.get("last_report")
    if report is None:
        st.info("No cycle has been run from this session yet.")
        return

    cols = st.columns(6)
    for col, (label, value) in zip(cols, [
        ("Processed", report.processed),
        ("Created", report.created),
        ("Updated", report.updated),
        ("Deleted", report.deleted),
        ("Skipped", report.skipped),
        ("Errors", report.errors),
    ]):
        col.metric(label, value)

    if report.errors:
        st.error(f"{report.errors} error(s) in run {report.run_id}. See the decisions below.")

    st.markdown("### Decisions")
    if not report.transactions:
        st.info("Nothing to do: every ledger is already in step.")
        return
    st.dataframe(
        [
            {
                "Action": d.action.value,
                "Date": d.date,
                "Budget": d.budget,
                "Account": d.account,
                "Payee": d.payee,
                "Amount": format_amount(d.amount),
                "Mirror amount": format_amount(d.converted_amount),
                "Rate": str(d.rate_used) if d.rate_used is not None else "",
                "Reason": d.reason,
                "Error": d.error_message,
            }
            for d in report.transactions
        ],
        use_container_width=True,
    )


def render_decisions_page(store: MappingStoreInterface):
    """Recent decision-log entries."""
    st.title("📜 Recent Decisions")
    limit = st.slider("Entries", min_value=20, max_value=500, value=100, step=20)
    entries = run_async(store.get_recent_log_entries(limit))
    if not entries:
        st.info("The decision log is empty.")
        return
    st.dataframe(
        [
            {
                "When": e.created_at,
                "Run": str(e.run_id)[:8],
                "Action": e.action.value,
                "Budget": e.details.budget,
                "Transaction": e.transaction_id,
                "Mirror": e.mirror_transaction_id,
                "Amount": format_amount(e.details.amount),
                "Reason": e.details.reason,
                "Error": e.error_message,
            }
            for e in entries
        ],
        use_container_width=True,
    )


def render_watermarks_page(store: MappingStoreInterface):
    """One row per ledger stream."""
    st.title("🧭 Watermarks")
    settings = get_settings().sync
    watermarks = run_async(store.list_watermarks())
    if not watermarks:
        st.info("No sub-run has completed yet.")
        return
    names = {b.id: b.name for b in settings.all_budgets}
    st.dataframe(
        [
            {
                "Budget": names.get(w.budget_id, w.budget_id),
                "Stream": w.stream,
                "Cursor": w.last_watermark,
                "Last run": w.last_run_at,
                "Status": w.last_status.value if w.last_status else "",
                "Synced": w.total_synced,
                "Last error": w.last_error,
            }
            for w in watermarks
        ],
        use_container_width=True,
    )


def render_mappings_page(store: MappingStoreInterface):
    """Mirror mappings, active by default."""
    st.title("🔗 Transaction Mappings")
    status = st.selectbox(
        "Status",
        options=[SyncStatus.ACTIVE, SyncStatus.DELETED, SyncStatus.ERROR, None],
        format_func=lambda x: "All" if x is None else x.value.title(),
    )
    mappings = run_async(store.list_mappings(status=status, limit=500))
    if not mappings:
        st.info("No mappings.")
        return
    st.dataframe(
        [
            {
                "Date": m.transaction_date,
                "Source": m.source_budget.value,
                "Personal slot": f"{m.personal_budget_id} / {m.personal_tx_id}",
                "Company slot": f"{m.company_budget_id} / {m.company_tx_id}",
                "Personal amount": format_amount(m.personal_amount),
                "Company amount": format_amount(m.company_amount),
                "Rate": str(m.exchange_rate),
                "Status": m.sync_status.value,
            }
            for m in mappings
        ],
        use_container_width=True,
    )


def render_linked_page(store: MappingStoreInterface):
    """Genuine transfers recognised by dedup; can be unlinked by hand."""
    st.title("🤝 Linked Transfers")
    links = run_async(store.list_linked_transactions(limit=500))
    if not links:
        st.info("No transfers have been linked.")
        return

    for link in links:
        with st.expander(f"{link.transaction_date} · {format_amount(link.amount)} · {link.link_type.value}"):
            st.markdown(f"**Side A:** `{link.budget_id_a}` / `{link.tx_id_a}`")
            st.markdown(f"**Side B:** `{link.budget_id_b}` / `{link.tx_id_b}`")
            st.markdown(f"**Reason:** {link.link_reason or '-'}")
            st.markdown(f"**Auto matched:** {'yes' if link.is_auto_matched else 'no'}")
            if st.button("✂️ Unlink", key=f"unlink-{link.id}"):
                run_async(store.delete_linked_transaction(link.id))
                st.success("Unlinked. Both entries will be mirrored if they change again.")
                st.rerun()


def render_links_page(store: MappingStoreInterface):
    """Account links of both link sets."""
    st.title("🏦 Account Links")
    settings = get_settings().sync

    st.markdown("### Personal ↔ organization")
    account_links = run_async(store.get_account_links(active_only=False))
    if account_links:
        st.dataframe(
            [
                {
                    "Organization": l.company_name,
                    "Budget": l.company_budget_id,
                    "Personal account": l.personal_account_id,
                    "Organization account": l.company_account_id,
                    "Active": l.active,
                }
                for l in account_links
            ],
            use_container_width=True,
        )

    with st.form("add_account_link"):
        company = st.selectbox(
            "Organization",
            options=settings.company_budgets,
            format_func=lambda b: f"{b.name} ({b.currency})",
        )
        personal_account = st.text_input("Personal account id")
        company_account = st.text_input("Organization account id")
        if st.form_submit_button("➕ Add link") and company:
            try:
                link = AccountLink(
                    company_budget_id=company.id,
                    company_name=company.name,
                    personal_account_id=personal_account,
                    company_account_id=company_account,
                )
            except ValueError as e:
                st.error(f"Invalid link: {e}")
            else:
                run_async(store.save_account_link(link))
                st.success("Link saved.")
                st.rerun()

    st.markdown("### Organization ↔ organization")
    company_links = run_async(store.get_company_account_links(active_only=False))
    if company_links:
        st.dataframe(
            [
                {
                    "First": f"{l.name_1} ({l.budget_id_1} / {l.account_id_1})",
                    "Second": f"{l.name_2} ({l.budget_id_2} / {l.account_id_2})",
                    "Active": l.active,
                }
                for l in company_links
            ],
            use_container_width=True,
        )

    if len(settings.company_budgets) >= 2:
        with st.form("add_company_link"):
            col1, col2 = st.columns(2)
            with col1:
                first = st.selectbox("First budget", settings.company_budgets, format_func=lambda b: b.name)
                first_account = st.text_input("First account id")
                first_name = st.text_input("First account name")
            with col2:
                second = st.selectbox("Second budget", settings.company_budgets, format_func=lambda b: b.name, index=1)
                second_account = st.text_input("Second account id")
                second_name = st.text_input("Second account name")
            if st.form_submit_button("➕ Add company link"):
                try:
                    link = CompanyAccountLink(
                        budget_id_1=first.id,
                        account_id_1=first_account,
                        name_1=first_name,
                        budget_id_2=second.id,
                        account_id_2=second_account,
                        name_2=second_name,
                    )
                except ValueError as e:
                    st.error(f"Invalid link: {e}")
                else:
                    run_async(store.save_company_account_link(link))
                    st.success("Company link saved.")
                    st.rerun()


def render_rates_page(store: MappingStoreInterface):
    """Monthly exchange rates."""
    st.title("💱 Exchange Rates")
    rates = run_async(store.list_exchange_rates())
    if rates:
        st.dataframe(
            [
                {
                    "Month": r.month,
                    "Pair": f"{r.base_currency} → {r.quote_currency}",
                    "Rate": str(r.rate),
                    "Source": r.source or "",
                    "Updated": r.updated_at,
                }
                for r in rates
            ],
            use_container_width=True,
        )
    else:
        st.warning("No rates stored. Transactions between currencies will fail until one is added.")

    st.markdown("### Add or replace a rate")
    with st.form("add_rate"):
        month = st.text_input("Month (YYYY-MM)", value=date.today().strftime("%Y-%m"))
        col1, col2, col3 = st.columns(3)
        base = col1.text_input("Base currency", value="EUR")
        quote = col2.text_input("Quote currency", value="USD")
        value = col3.text_input("Rate (1 base = rate quote)")
        if st.form_submit_button("💾 Save rate"):
            try:
                rate = ExchangeRate(
                    month=month,
                    base_currency=base,
                    quote_currency=quote,
                    rate=Decimal(value),
                    source="dashboard",
                )
            except (InvalidOperation, ValueError) as e:
                st.error(f"Invalid rate: {e}")
            else:
                run_async(store.save_exchange_rate(rate))
                st.success(f"Saved {rate.base_currency}→{rate.quote_currency} {rate.rate} for {rate.month}.")
                st.rerun()


def render_settings_page():
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Configuration Status")

    status = validate_all_settings()

    groups = [
        ("YNAB API", "ynab"),
        ("Database", "database"),
        ("Sync (budgets and rules)", "sync"),
        ("Application", "app"),
    ]

    for name, key in groups:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    if status.get("sync"):
        sync = get_settings().sync
        st.markdown("### Budgets")
        st.markdown(f"- **Personal:** {sync.personal_budget.name} ({sync.personal_budget.currency})")
        for budget in sync.company_budgets:
            st.markdown(f"- **Organization:** {budget.name} ({budget.currency})")

    st.markdown("---")
    st.markdown(
        "To configure the application, create a `.env` file. "
        "See `.env.example` for the required variables."
    )


if __name__ == "__main__":
    main()
