import os
import re

import requests
import streamlit as st

API_BASE = os.getenv("DOC_SERVICE_API_BASE", os.getenv("API_BASE", "http://localhost:3001")).rstrip("/")
CONVERT_TIMEOUT = float(os.getenv("DOC_SERVICE_UI_TIMEOUT", "660"))
UPLOAD_TYPES = ["doc", "docx", "xls", "xlsx", "ppt", "pptx"]

_DISPOSITION_NAME = re.compile(r'filename="?([^";]+)"?')


def _filename_from_disposition(header: str | None, fallback: str) -> str:
    if header:
        m = _DISPOSITION_NAME.search(header)
        if m:
            return m.group(1)
    return fallback


def _error_text(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return f"{resp.status_code} {resp.text}"
    return f"{resp.status_code} {data.get('error', resp.text)}"


def _request_conversion(name: str, data: bytes, mime: str | None) -> tuple[bytes, str]:
    """Upload one document and return (pdf bytes, download file name).

    Raises RuntimeError with a displayable message on any failure.
    """
    files = {"file": (name, data, mime or "application/octet-stream")}
    try:
        resp = requests.post(f"{API_BASE}/api/convert-docx-to-pdf", files=files, timeout=CONVERT_TIMEOUT)
    except requests.RequestException as e:
        raise RuntimeError(f"Failed to connect to API: {e}") from e
    if resp.status_code != 200:
        raise RuntimeError(f"Conversion failed: {_error_text(resp)}")
    fallback = f"{os.path.splitext(name)[0] or 'converted'}.pdf"
    return resp.content, _filename_from_disposition(resp.headers.get("Content-Disposition"), fallback)


def _service_info() -> dict[str, object] | None:
    try:
        resp = requests.get(f"{API_BASE}/api/info", timeout=10)
    except requests.RequestException:
        return None
    if resp.status_code != 200:
        return None
    return resp.json()


RESULT_KEYS = ("pdf_bytes", "pdf_name", "error")


def _clear_result(session) -> None:
    for key in RESULT_KEYS:
        session.pop(key, None)


def _uploader_key(session, *, restart: bool = False) -> str:
    """Widget key for the uploader; a restart bumps it so the widget forgets its file."""
    session.setdefault("upload_key", 0)
    if restart:
        _clear_result(session)
        session["upload_key"] += 1
    return f"uploader-{session['upload_key']}"


def main() -> None:
    st.set_page_config(page_title="Office to PDF", page_icon="📄", layout="centered")
    st.title("📄 Office to PDF")
    info = _service_info()
    if info:
        st.caption(f"API base: {API_BASE} · engine: {info.get('engineVersion') or 'unknown'} · max {info.get('maxFileSize')}")
    else:
        st.caption(f"API base: {API_BASE} (service not reachable)")

    if st.button("Restart", type="secondary"):
        _uploader_key(st.session_state, restart=True)
        st.rerun()

    uploaded = st.file_uploader(
        "Upload a document (DOC, DOCX, XLS, XLSX, PPT, PPTX)",
        type=UPLOAD_TYPES,  # type: ignore[arg-type]
        key=_uploader_key(st.session_state),
    )

    if uploaded and "pdf_bytes" not in st.session_state and st.button("Convert to PDF", type="primary"):
        with st.spinner("Uploading and converting..."):
            try:
                pdf, name = _request_conversion(uploaded.name, uploaded.getvalue(), uploaded.type)
            except RuntimeError as e:
                st.session_state["error"] = str(e)
            else:
                st.session_state["pdf_bytes"] = pdf
                st.session_state["pdf_name"] = name
                st.session_state.pop("error", None)

    if "pdf_bytes" in st.session_state:
        st.success("Conversion complete!")
        st.download_button(
            label="Download PDF",
            data=st.session_state["pdf_bytes"],
            file_name=st.session_state["pdf_name"],
            mime="application/pdf",
        )

    if err := st.session_state.get("error"):
        st.error(err)


if __name__ == "__main__":
    main()
