"""
Streamlit Frontend for BudgetWise Backup & Security

The settings screens a user reaches from the profile tab:
backups, restore and device security.

DESIGN PRINCIPLES:
1. Every long action shows stage text while it runs
2. Restore is a destructive overwrite and always asks first
3. Failures say what happened and offer to retry
4. No hidden actions

The UI enforces the confirm-before-overwrite principle:
- User sees what the backup contains
- User explicitly confirms the overwrite
- Nothing is restored without the "Restore now" action
"""

import asyncio

import streamlit as st

from budgetwise.backup import BackupError, RestoreIncompleteError
from budgetwise.models.settings import BackupFrequency, PrivacyMode, SecurityLevel
from budgetwise.orchestrator import AppComponents, create_app_components


# Page configuration
st.set_page_config(
    page_title="BudgetWise",
    page_icon="💾",
    layout="wide",
    initial_sidebar_state="expanded",
)


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components() -> AppComponents:
    """Get or create application components (cached)."""
    return create_app_components(use_remote=True)


def main():
    """Main application entry point."""
    app = get_components()

    st.sidebar.title("💾 BudgetWise")
    st.sidebar.markdown("---")

    user_id = st.sidebar.text_input("Signed in as (user id)", key="user_id")
    if user_id:
        app.user_provider.sign_in(user_id)
    else:
        app.user_provider.sign_out()
        st.info("Sign in to manage backups and security.")
        st.stop()

    # Foreground check, at most once per day per user
    if not st.session_state.get("auto_backup_checked"):
        st.session_state.auto_backup_checked = True
        result = run_async(app.scheduler.check_and_run())
        if result:
            st.sidebar.success(f"Automatic backup saved ({result.size_mb:.2f} MB)")

    page = st.sidebar.radio(
        "Navigate to:",
        ["💾 Backup", "♻️ Restore", "🔒 Security"],
        index=0,
    )

    if page == "💾 Backup":
        render_backup_page(app, user_id)
    elif page == "♻️ Restore":
        render_restore_page(app, user_id)
    elif page == "🔒 Security":
        render_security_page(app, user_id)


def request_backup():
    """Button callback; runs before the rerun that performs the backup."""
    st.session_state.backup_requested = True


def render_backup_page(app: AppComponents, user_id: str):
    """Backup settings, manual backup and history."""
    st.title("💾 Backup")

    settings = run_async(app.settings_service.get_backup_settings(user_id))
    if settings is None:
        st.error("Could not load your backup settings. Please try again later.")
        return

    with st.form("backup_settings"):
        auto_enabled = st.checkbox("Automatic backup", value=settings.auto_backup_enabled)
        frequencies = list(BackupFrequency)
        frequency = st.selectbox(
            "Frequency",
            frequencies,
            index=frequencies.index(settings.backup_frequency),
            format_func=lambda f: f.value.title(),
        )
        st.markdown("**Include in backup**")
        include_transactions = st.checkbox("Transactions", value=settings.include_transactions)
        include_budgets = st.checkbox("Budgets", value=settings.include_budgets)
        include_challenges = st.checkbox("Challenges", value=settings.include_challenges)
        include_settings = st.checkbox("Settings", value=settings.include_settings)
        encryption_enabled = st.checkbox(
            "Encrypt backups",
            value=settings.encryption_enabled,
            help="Backups are tagged against tampering. The data itself is only "
                 "encrypted while device encryption is on (Security page).",
        )

        if st.form_submit_button("Save settings"):
            saved = run_async(app.settings_service.update_backup_settings(user_id, {
                "auto_backup_enabled": auto_enabled,
                "backup_frequency": frequency,
                "include_transactions": include_transactions,
                "include_budgets": include_budgets,
                "include_challenges": include_challenges,
                "include_settings": include_settings,
                "encryption_enabled": encryption_enabled,
            }))
            if saved:
                st.success("✅ Backup settings saved")
            else:
                st.error("❌ Could not save backup settings")

    st.markdown("---")
    if settings.last_backup_at:
        st.caption(f"Last backup: {settings.last_backup_at:%Y-%m-%d %H:%M}")

    st.button("💾 Back up now", type="primary", on_click=request_backup)
    if st.session_state.get("backup_requested"):
        st.session_state.backup_requested = False
        st.session_state.backup_failure = None
        stage = st.empty()
        with st.spinner("Backing up..."):
            try:
                result = run_async(app.backup_flow.run_backup(progress=stage.info))
                stage.empty()
                st.success(f"✅ Backup saved ({result.size_mb:.2f} MB)")
            except BackupError as e:
                stage.empty()
                st.session_state.backup_failure = {"message": str(e), "retryable": e.retryable}

    # Kept across reruns so the retry button is still there when clicked
    failure = st.session_state.get("backup_failure")
    if failure:
        st.error(f"❌ {failure['message']}")
        if failure["retryable"]:
            st.button("🔁 Retry backup", on_click=request_backup)

    st.markdown("### History")
    history = run_async(app.settings_service.get_backup_history(user_id))
    if not history:
        st.info("No backups yet.")
    for entry in history:
        size = f"{entry.backup_size_mb:.2f} MB" if entry.backup_size_mb is not None else "-"
        st.markdown(
            f"- {entry.started_at:%Y-%m-%d %H:%M} · {entry.backup_type.value} · "
            f"**{entry.backup_status.value}** · {size}"
        )
        if entry.error_message:
            st.caption(entry.error_message)


def render_restore_page(app: AppComponents, user_id: str):
    """Pick a backup, preview it, confirm the overwrite."""
    st.title("♻️ Restore")
    st.markdown(
        "Restoring **replaces** your current data with the backup. "
        "Data added since the backup will be lost."
    )

    if "pending_restore" not in st.session_state:
        st.session_state.pending_restore = None

    history = run_async(app.settings_service.get_backup_history(user_id))
    restorable = [entry for entry in history if entry.is_restorable]
    if not restorable:
        st.info("No backup is available. Create a backup first.")
        return

    choice = st.selectbox(
        "Backup",
        restorable,
        format_func=lambda entry: f"{entry.started_at:%Y-%m-%d %H:%M} ({entry.backup_type.value})",
    )

    if st.button("🔍 Load backup"):
        stage = st.empty()
        with st.spinner("Loading backup..."):
            try:
                st.session_state.pending_restore = run_async(
                    app.restore_flow.load_backup(choice.backup_file_path, progress=stage.info)
                )
            except BackupError as e:
                st.session_state.pending_restore = None
                st.error(f"❌ {e}")
        stage.empty()

    pending = st.session_state.pending_restore
    if pending is None:
        return

    preview = pending.preview
    st.markdown("---")
    st.subheader("📋 Backup contents")
    st.caption(f"Created {preview.backup_date}" + (" · encrypted" if preview.encrypted else ""))
    for category, count in preview.row_counts.items():
        st.markdown(f"- **{category}**: {count}")

    confirmed = st.checkbox("I understand my current data will be replaced")
    col1, col2 = st.columns(2)
    with col1:
        restore_clicked = st.button("♻️ Restore now", type="primary", disabled=not confirmed)
    with col2:
        if st.button("Cancel"):
            run_async(app.audit_logger.log_restore_decision(
                user_id, pending.source_path, False, pending.correlation_id
            ))
            st.session_state.pending_restore = None
            st.rerun()

    if restore_clicked:
        run_async(app.audit_logger.log_restore_decision(
            user_id, pending.source_path, True, pending.correlation_id
        ))
        stage = st.empty()
        with st.spinner("Restoring..."):
            try:
                result = run_async(app.restore_flow.confirm_and_restore(pending, progress=stage.info))
                stage.empty()
                st.session_state.pending_restore = None
                st.success(f"✅ Restored {', '.join(result.restored_categories)}")
            except RestoreIncompleteError as e:
                stage.empty()
                st.error(f"❌ {e.user_message}")
                if e.result.restored_categories:
                    st.warning(
                        "Already replaced: " + ", ".join(e.result.restored_categories)
                    )
                st.info("Press Restore now again to retry from the start.")
            except BackupError as e:
                stage.empty()
                st.error(f"❌ {e}")


def render_security_page(app: AppComponents, user_id: str):
    """Security level, privacy mode, hidden data and device encryption."""
    st.title("🔒 Security")

    settings = run_async(app.settings_service.get_security_settings(user_id))
    if settings is None:
        st.error("Could not load your security settings. Please try again later.")
        return

    levels = list(SecurityLevel)
    level = st.selectbox(
        "Security level",
        levels,
        index=levels.index(settings.security_level),
        format_func=lambda v: v.value.title(),
    )
    if level != settings.security_level:
        if run_async(app.security_controls.set_security_level(user_id, level)):
            st.rerun()
        st.error("❌ Could not update security level")

    modes = list(PrivacyMode)
    mode = st.selectbox(
        "Privacy mode",
        modes,
        index=modes.index(settings.privacy_mode),
        format_func=lambda v: v.value.title(),
    )
    if mode != settings.privacy_mode:
        if run_async(app.security_controls.set_privacy_mode(user_id, mode)):
            st.rerun()
        st.error("❌ Could not update privacy mode")

    st.markdown("### Hidden data")
    with st.form("sensitive_data"):
        hide_balances = st.checkbox("Hide balances", value=settings.hide_balances)
        hide_transactions = st.checkbox("Hide transactions", value=settings.hide_transactions)
        hide_budgets = st.checkbox("Hide budgets", value=settings.hide_budgets)
        require_auth = st.checkbox(
            "Ask for authentication before sensitive actions",
            value=settings.require_auth_for_sensitive_actions,
        )
        if st.form_submit_button("Save"):
            saved = run_async(app.security_controls.set_sensitive_data(
                user_id,
                hide_balances=hide_balances,
                hide_transactions=hide_transactions,
                hide_budgets=hide_budgets,
                require_auth_for_sensitive_actions=require_auth,
            ))
            if saved:
                st.success("✅ Saved")
            else:
                st.error("❌ Could not save")

    st.markdown("### This device")
    encryption_on = run_async(app.encryption.is_encryption_enabled())
    st.markdown(f"Device encryption: **{'on' if encryption_on else 'off'}**")
    if encryption_on:
        st.caption("Turning encryption off deletes the key. Encrypted backups can no longer be read here.")
        if st.button("Turn off encryption"):
            run_async(app.security_controls.disable_encryption(user_id))
            st.rerun()

    biometric_on = run_async(app.credentials.is_biometric_login_enabled())
    st.markdown(f"Biometric login: **{'on' if biometric_on else 'off'}**")
    if biometric_on:
        if st.button("Turn off biometric login"):
            run_async(app.credentials.disable_biometric_login())
            st.rerun()
    elif st.button("Turn on biometric login"):
        if run_async(app.credentials.enable_biometric_login()):
            st.rerun()
        st.warning("Sign in with your password once before turning on biometric login.")

    if st.button("Forget saved login"):
        run_async(app.credentials.clear_stored_credentials())
        st.success("Saved login removed")


if __name__ == "__main__":
    main()
