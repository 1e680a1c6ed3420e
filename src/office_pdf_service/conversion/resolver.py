import logging
from pathlib import Path

from .interfaces import DirectorySnapshot

PDF_SUFFIX = ".pdf"


def similarity(a: str, b: str) -> float:
    """Coarse, symmetric name similarity used to rank candidate artifacts."""
    longer, shorter = (a, b) if len(a) > len(b) else (b, a)
    if not longer:
        return 1.0
    if shorter in longer:
        return 0.9
    if longer.startswith(shorter) or shorter.startswith(longer):
        return 0.7
    return 0.1


def _is_pdf(name: str) -> bool:
    return name.lower().endswith(PDF_SUFFIX)


class ArtifactResolver:
    """Finds the PDF the engine produced by diffing directory listings.

    The engine does not promise an output name, so candidates are tried in
    order: the exact ``<base>.pdf``, new PDFs containing the base name
    (best similarity first), then any new PDF.
    """

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self._log = logger or logging.getLogger(__name__)

    def resolve(self, input_base_name: str, output_dir: str | Path, before: DirectorySnapshot) -> Path | None:
        out = Path(output_dir)
        after = DirectorySnapshot.capture(out)
        new_files = after.new_since(before)
        self._log.info("new files in %s: %s", out, new_files)

        expected = f"{input_base_name}{PDF_SUFFIX}"
        if expected in after and expected not in before:
            self._log.info("resolved artifact by exact name: %s", expected)
            return out / expected

        new_pdfs = [n for n in new_files if _is_pdf(n)]
        base = input_base_name.lower()
        matching = [n for n in new_pdfs if base in n.lower()]
        if matching:
            # sorted() is stable, so equal scores keep enumeration order
            best = sorted(matching, key=lambda n: similarity(n, input_base_name), reverse=True)[0]
            self._log.info("resolved artifact by name similarity: %s", best)
            return out / best

        if new_pdfs:
            self._log.warning("no artifact matches %r; falling back to %s", input_base_name, new_pdfs[0])
            return out / new_pdfs[0]

        self._log.error("no new PDF found in %s for %r", out, input_base_name)
        return None
