"""
Knowledge Ingestion - Streamlit Monitor
Lists registered sources and runs one source with live progress.
"""

import asyncio
import json
import logging
from datetime import datetime

import pandas as pd
import streamlit as st
from dotenv import load_dotenv

load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from kbingest.models import EventKind
from kbingest.pipeline import PipelineCoordinator
from kbingest.run_config import IngestRunConfig
from kbingest.services import AnthropicCompletionClient, OpenAIEmbeddingClient
from kbingest.storage import JsonSourceStore

# Page configuration
st.set_page_config(
    page_title="Knowledge Ingestion",
    page_icon="📚",
    layout="wide",
    initial_sidebar_state="expanded"
)


def init_session_state():
    """Initialize session state variables."""
    if 'run_logs' not in st.session_state:
        st.session_state.run_logs = []
    if 'last_result' not in st.session_state:
        st.session_state.last_result = None
    if 'last_error' not in st.session_state:
        st.session_state.last_error = ""


def add_log(message: str):
    """Add a log message."""
    timestamp = datetime.now().strftime("%H:%M:%S")
    st.session_state.run_logs.append(f"[{timestamp}] {message}")
    # Keep only last 200 logs
    if len(st.session_state.run_logs) > 200:
        st.session_state.run_logs = st.session_state.run_logs[-200:]


def sources_frame(store: JsonSourceStore) -> pd.DataFrame:
    """One row per source for the overview table."""
    rows = []
    for s in store.list_sources():
        stats = store.embedding_stats([s.id])
        rows.append({
            'id': s.id,
            'name': s.name,
            'category': s.category,
            'active': s.is_active,
            'processed': s.is_processed,
            'pages': s.pages_crawled,
            'content_chars': len(s.content or ""),
            'summary_chars': len(s.summary or ""),
            'chunks': stats['total'],
            'embedded': stats['with_embedding'],
            'last_synced': s.last_synced.strftime("%Y-%m-%d %H:%M") if s.last_synced else "",
        })
    return pd.DataFrame(rows)


def render_sidebar(cfg: IngestRunConfig) -> IngestRunConfig:
    """Sidebar knobs; returns the adjusted config."""
    st.sidebar.markdown("## ⚙️ Run Settings")
    cfg.max_links = st.sidebar.slider(
        "Articles per source",
        min_value=1,
        max_value=50,
        value=cfg.max_links,
        help="Upper bound on visited article links"
    )
    cfg.headless = st.sidebar.checkbox("Headless browser", value=cfg.headless)
    cfg.skip_unchanged = st.sidebar.checkbox(
        "Skip unchanged content",
        value=cfg.skip_unchanged,
        help="Keep the existing summary when the crawled corpus is identical"
    )
    st.sidebar.markdown("---")
    st.sidebar.write(f"**Store:** `{cfg.store_path}`")
    st.sidebar.write(f"**Completion model:** `{cfg.completion_model}`")
    st.sidebar.write(
        f"**Embeddings:** `{cfg.embedding_model if cfg.embeddings_enabled else 'disabled'}`"
    )
    return cfg


async def stream_run(coordinator: PipelineCoordinator, source, status_box, progress_bar):
    """Consume the event stream, updating the page as events arrive."""
    steps = 0
    async for event in coordinator.run_source(source):
        if event.kind == EventKind.STATUS:
            steps += 1
            add_log(event.message)
            status_box.info(event.message)
            progress_bar.progress(min(steps / 40, 0.95))
        elif event.kind == EventKind.RESULT:
            st.session_state.last_result = event.data
        elif event.kind == EventKind.ERROR:
            st.session_state.last_error = event.message
            add_log(f"Error: {event.message}")
        elif event.kind == EventKind.DONE:
            progress_bar.progress(1.0)


def main():
    init_session_state()
    cfg = render_sidebar(IngestRunConfig.from_env())

    st.markdown("# 📚 Knowledge Ingestion")
    st.caption("Crawl login-gated sources, summarize them and index the chunks")

    store = JsonSourceStore(cfg.store_path)
    df = sources_frame(store)
    if df.empty:
        st.info("No sources registered yet. Add one with `python -m kbingest add`.")
        return

    c1, c2, c3 = st.columns(3)
    c1.metric("Sources", len(df))
    c2.metric("Processed", int(df['processed'].sum()))
    c3.metric("Chunks embedded", f"{int(df['embedded'].sum())}/{int(df['chunks'].sum())}")

    st.dataframe(df, use_container_width=True, hide_index=True)

    st.markdown("### ▶️ Run a source")
    names = dict(zip(df['id'], df['name']))
    source_id = st.selectbox("Source", options=list(names), format_func=lambda i: names[i])

    if st.button("Run now", type="primary"):
        if not cfg.anthropic_api_key:
            st.error("ANTHROPIC_API_KEY is not set")
        else:
            st.session_state.run_logs = []
            st.session_state.last_result = None
            st.session_state.last_error = ""
            embeddings = None
            if cfg.embeddings_enabled:
                embeddings = OpenAIEmbeddingClient(
                    cfg.openai_api_key,
                    model=cfg.embedding_model,
                    dimensions=cfg.embedding_dimensions,
                )
            coordinator = PipelineCoordinator(
                store,
                cfg,
                AnthropicCompletionClient(cfg.anthropic_api_key, model=cfg.completion_model),
                embeddings,
            )
            status_box = st.empty()
            progress_bar = st.progress(0)
            try:
                asyncio.run(stream_run(coordinator, store.get_source(source_id), status_box, progress_bar))
            except Exception as e:
                st.session_state.last_error = str(e)
                logger.exception("Run failed")
            st.rerun()

    if st.session_state.last_error:
        st.error(st.session_state.last_error)
    if st.session_state.last_result:
        st.success("Run complete")
        st.code(json.dumps(st.session_state.last_result, indent=2, ensure_ascii=False), language="json")

    if st.session_state.run_logs:
        with st.expander("📋 Run Logs", expanded=False):
            st.code("\n".join(st.session_state.run_logs[-80:]), language=None)


if __name__ == "__main__":
    main()
