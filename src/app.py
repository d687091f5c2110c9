"""
Product Data Reconciliation Tool: Streamlit UI

Compares the master product workbook against the product catalog:
    - Single Product: look up one A2V article number in the catalog
    - Workbook Reconciliation: upload the master .xlsx, every A2V key is fetched
      and two rows (web data + comparison) are inserted under each product row

Run with:
    streamlit run app.py

Settings default to SCRAPE_CONCURRENCY / WEIGHT_TOL_PCT from the environment.
"""

import logging

import pandas as pd
import streamlit as st

from comparator import VERDICT_MATCH, VERDICT_MISMATCH, VERDICT_UNRESOLVED
from config import ConfigurationError, ReconcileConfig, ReconcileError, configure_logging
from fetcher import ProductPageFetcher
from reconciler import (
    OUTPUT_FILENAME,
    XLSX_MIME,
    failed_lookup_notice,
    process_workbook,
    summarize_report,
    verdict_counts,
)
from retrieval import KEY_PREFIX, fetch_single

configure_logging()
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Page config
# ---------------------------------------------------------------------------
st.set_page_config(
    page_title="Product Data Reconciliation",
    page_icon="🔎",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.title("🔎 Product Data Reconciliation")
st.markdown("**Master workbook vs. product catalog, attribute by attribute**")

try:
    base_config = ReconcileConfig.from_environment()
except ConfigurationError as e:
    st.error(f"Invalid configuration: {e}")
    st.stop()

# ---------------------------------------------------------------------------
# Sidebar
# ---------------------------------------------------------------------------
st.sidebar.header("⚙️ Settings")

concurrency = st.sidebar.slider(
    "Parallel catalog requests",
    min_value=1, max_value=20, value=min(base_config.concurrency, 20), step=1,
    help="Maximum number of product pages fetched at the same time.",
)
tolerance = st.sidebar.number_input(
    "Weight tolerance (%)",
    min_value=0.0, max_value=100.0, value=float(base_config.weight_tolerance_pct), step=0.5,
    help="Allowed relative weight deviation. 0 requires an exact match.",
)

config = base_config.with_overrides(concurrency=concurrency, weight_tolerance_pct=tolerance)

st.sidebar.divider()
st.sidebar.markdown("**Comparison colours:**")
st.sidebar.markdown("🟢 **MATCH**: values agree")
st.sidebar.markdown("🔴 **MISMATCH**: values differ")
st.sidebar.markdown("🟡 **UNRESOLVED**: one or both values missing")


def color_verdict(val):
    if val == VERDICT_MATCH:
        return 'background-color: #d5f4e6; color: #155724'
    elif val == VERDICT_MISMATCH:
        return 'background-color: #fdeaea; color: #721c24'
    elif val == VERDICT_UNRESOLVED:
        return 'background-color: #fff3cd; color: #856404'
    return ''


# =========================================================================
# Tab Navigation
# =========================================================================
tab1, tab2 = st.tabs(["🔍 Single Product", "📊 Workbook Reconciliation"])

# =========================================================================
# TAB 1: SINGLE PRODUCT
# =========================================================================
with tab1:
    st.header("🔍 Single Product Lookup")
    article_number = st.text_input(
        "Article number",
        placeholder=f"{KEY_PREFIX}00001234567",
        help=f"Only {KEY_PREFIX} article numbers are supported.",
    )

    if st.button("Fetch from catalog", type="primary") and article_number:
        fetcher = ProductPageFetcher(timeout=config.fetch_timeout_seconds)
        try:
            with st.spinner("Fetching product page..."):
                record = fetch_single(article_number, fetcher)
        except ReconcileError as e:
            st.error(str(e))
        else:
            st.success(f"Found **{record.title or record.key}**")
            st.markdown(f"[Open in catalog]({record.url})")
            st.dataframe(
                pd.DataFrame(list(record.as_dict().items()), columns=['Field', 'Value']),
                use_container_width=True, hide_index=True,
            )
        finally:
            fetcher.close()

# =========================================================================
# TAB 2: WORKBOOK RECONCILIATION
# =========================================================================
with tab2:
    st.header("📊 Workbook Reconciliation")
    st.markdown(
        "Upload the master workbook. Keys are read from column **Z** starting at row 4; "
        "under every product row a **web data** row and a **comparison** row are inserted."
    )

    upload = st.file_uploader("📁 Upload master workbook (.xlsx)", type=["xlsx"], key="workbook_upload")

    if upload is not None and st.button("🚀 Run Reconciliation", type="primary", use_container_width=True):
        progress = st.progress(0, text="Fetching catalog data...")

        def on_progress(done, total):
            progress.progress(done / total, text=f"Fetching catalog data... {done:,}/{total:,}")

        fetcher = ProductPageFetcher(timeout=config.fetch_timeout_seconds)
        try:
            output, report = process_workbook(upload.getvalue(), fetcher, config, on_progress)
        except ReconcileError as e:
            progress.empty()
            st.error(str(e))
            st.stop()
        finally:
            fetcher.close()
        progress.progress(1.0, text="✅ Reconciliation complete!")

        df_summary = summarize_report(report)
        counts = verdict_counts(df_summary)

        ca, cb, cc, cd = st.columns(4)
        ca.metric("Products", len(df_summary))
        cb.metric("🟢 Match", counts[VERDICT_MATCH])
        cc.metric("🔴 Mismatch", counts[VERDICT_MISMATCH])
        cd.metric("🟡 Unresolved", counts[VERDICT_UNRESOLVED])

        notice = failed_lookup_notice(report)
        if notice:
            st.warning(notice)

        attribute_cols = [c for c in df_summary.columns if c not in ('Sheet', 'Row', 'Key', 'Fetch Error')]
        st.dataframe(
            df_summary.style.map(color_verdict, subset=attribute_cols),
            use_container_width=True, hide_index=True,
        )

        st.divider()
        st.download_button(
            label="📥 Download Reconciled Workbook",
            data=output,
            file_name=OUTPUT_FILENAME,
            mime=XLSX_MIME,
            type="primary",
            use_container_width=True,
        )
