# dashboard/app.py
# Streamlit dashboard: choose the number of clusters, see the groupings update

import logging
import sys
from pathlib import Path

import plotly.express as px
import streamlit as st

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from selectivity.config import READABLE_TABLE_FILE, RESULTS_DIR, UI_K_BOUNDS, DEFAULT_K
from selectivity.errors import SelectivityError
from selectivity.session import InteractiveSession, LoadedInputs

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

st.set_page_config(
    page_title="University Clustering Analysis",
    layout="wide",
)


@st.cache_resource
def get_inputs():
    """Artifacts are read once per server process and shared read-only."""
    return LoadedInputs.from_files(RESULTS_DIR)


def get_session(inputs):
    """One session per browser session, so each user's view has a single writer."""
    if "selectivity_session" not in st.session_state:
        st.session_state["selectivity_session"] = InteractiveSession(inputs)
    return st.session_state["selectivity_session"]


try:
    session = get_session(get_inputs())
except SelectivityError as e:
    st.error(f"Could not load pipeline outputs from {RESULTS_DIR}: {e}\n\n"
             "Run `python run_pipeline.py` first.")
    st.stop()

st.title("University Clustering Analysis")
st.subheader("Choose how many clusters to use on the left & view your results on the right")
st.markdown(
    "K-Means clustering identifies interesting patterns in data by grouping it "
    "together. You can create your own groups of universities below!"
)

lo, hi = UI_K_BOUNDS
hi = min(hi, session.n_rows)
if hi > lo:
    k = st.sidebar.slider("Number of clusters:", min_value=lo, max_value=hi,
                          value=session.clamp_k(DEFAULT_K), step=1,
                          help="Adjust the number of clusters to explore different groupings.")
else:
    k = lo
    st.sidebar.info(f"Only {session.n_rows} institution available; showing k={k}.")

try:
    view = session.view_for(k)
except SelectivityError as e:
    st.sidebar.warning(f"Keeping k={session.k}: {e}")
    view = session.view

pc1, pc2 = session.inputs.projection.explained_variance_ratio

tab_pca, tab_scatter = st.tabs(["PCA Analysis", "Scatterplot with Clusters"])

with tab_pca:
    df = view.pca_plot.assign(cluster=view.pca_plot["cluster"].astype(str))
    fig = px.scatter(
        df, x="PC1", y="PC2", color="cluster",
        hover_name="school" if "school" in df.columns else None,
        labels={"PC1": f"Dim1 ({pc1:.1%})", "PC2": f"Dim2 ({pc2:.1%})"},
        title="Clustering Results",
        template="plotly_white",
    )
    st.plotly_chart(fig, use_container_width=True)
    st.caption("View the size & similarity of the clusters selected. In this graph, all "
               "dimensions are reduced down to two key 'principal components'.")

with tab_scatter:
    df = view.scatter_plot.assign(cluster=view.scatter_plot["cluster"].astype(str))
    fig = px.scatter(
        df, x="act_score", y="blended_tuition", color="cluster", size="ug_enroll",
        hover_name="school" if "school" in df.columns else None,
        hover_data={"ug_enroll": True},
        labels={
            "act_score": "ACT Score (Composite, 75th Percentile)",
            "blended_tuition": "Average Tuition Rate",
            "ug_enroll": "Undergrad Enrollment",
        },
        title="Selectivity Metrics for Schools Based on Cluster",
        template="plotly_white",
    )
    st.plotly_chart(fig, use_container_width=True)
    st.caption("This graph shows the clusters overlaid on two key dimensions of the "
               "analysis: ACT score and average tuition.")

st.sidebar.markdown("---")
st.sidebar.caption(f"Inertia: {view.model.inertia:,.1f}")
st.sidebar.dataframe(view.model.sizes.rename("institutions"))
st.sidebar.download_button(
    "Download the data used in this analysis",
    data=(RESULTS_DIR / READABLE_TABLE_FILE).read_bytes(),
    file_name=READABLE_TABLE_FILE,
    mime="text/csv",
)
