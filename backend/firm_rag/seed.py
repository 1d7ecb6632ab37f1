"""
Shared Corpus Seeding
═════════════════════

Loads a starter set of legal reference texts into the shared corpus
(document_type=knowledge_base, no owner) so searches with
include_shared_corpus=True have something to return on a fresh database.

Each entry goes through the normal ingestion pipeline.  A failed entry is
logged and the run moves on to the next one.

Usage:
    firm-rag-seed                      # seed the built-in texts
    firm-rag-seed --dir ./references   # also seed every .txt/.pdf/.docx in a directory
    firm-rag-seed --dry-run            # list what would be seeded
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Union

from firm_rag.container import StudyServices, build_services
from firm_rag.core.config import get_settings
from firm_rag.core.errors import FirmRAGError
from firm_rag.main import configure_logging
from firm_rag.services.ingestion import IngestionResult
from firm_rag.store.base import DocumentStatus, DocumentType

logger = logging.getLogger(__name__)

SEED_FILE_SUFFIXES = (".txt", ".pdf", ".docx")


@dataclass(frozen=True)
class SeedDocument:
    title:    str
    content:  Union[str, bytes]
    filename: str | None = None


BUILT_IN_DOCUMENTS: tuple[SeedDocument, ...] = (
    SeedDocument(
        title="Contract Law - Formation Principles",
        content="""\
Contract Formation

A binding contract needs an offer, an acceptance that mirrors the offer, consideration passing between the parties, and an intention to create legal relations.

An offer is a definite proposal showing willingness to be bound on stated terms. An invitation to treat, such as an advertisement or a display of goods, is not an offer.

Acceptance must be unqualified and communicated to the offeror. A reply that changes the terms is a counter-offer and destroys the original offer.

Consideration is something of value given in return for the promise. It must be sufficient but need not be adequate, and past consideration is generally no consideration.

Promissory estoppel can prevent a promisor from going back on a promise that the promisee relied upon, even without consideration.""",
    ),
    SeedDocument(
        title="Tort Law - Negligence Elements",
        content="""\
Negligence

A claimant in negligence must prove duty of care, breach of that duty, causation and damage.

Duty of Care: a duty is owed to persons so closely and directly affected by the defendant's act that the defendant ought reasonably to have them in contemplation. Novel situations ask whether harm was foreseeable, whether the parties were proximate, and whether imposing a duty is fair, just and reasonable.

Breach: the defendant falls below the standard of the reasonable person in the circumstances. Professionals are judged against a responsible body of their peers.

Causation: the breach must be a factual cause of the harm (but for the breach, the harm would not have occurred) and the harm must not be too remote, being of a kind reasonably foreseeable.

Damage: actionable loss such as personal injury or property damage. Pure economic loss is recoverable only in limited circumstances.""",
    ),
    SeedDocument(
        title="Criminal Law - Mens Rea Principles",
        content="""\
Mens Rea

Most serious offences require a guilty mind accompanying the guilty act.

Intention: direct intention exists where the consequence is the defendant's aim. Oblique intention may be found where the consequence was virtually certain and the defendant appreciated that.

Recklessness: the defendant was aware of a risk and unreasonably went on to take it.

Negligence: conduct falling far below the standard of a reasonable person, which suffices for a small number of offences such as gross negligence manslaughter.

Strict Liability: some regulatory offences require no mens rea as to one or more elements of the actus reus.

Coincidence: the actus reus and mens rea must coincide in time, although a continuing act or a single transaction can satisfy this.""",
    ),
    SeedDocument(
        title="Property Law - Adverse Possession",
        content="""\
Adverse Possession

A squatter may acquire title to land by possessing it for the statutory period.

Possession must be actual, meaning a sufficient degree of physical custody and control.

It must be open and notorious, so that a reasonable owner inspecting the land would notice it.

It must be exclusive and hostile, without the owner's permission.

It must be continuous for the whole of the limitation period.

The doctrine encourages the productive use of land and quiets stale claims to title.""",
    ),
    SeedDocument(
        title="Constitutional Law - Due Process",
        content="""\
Due Process

Procedural due process requires fair procedures before the state deprives a person of life, liberty or property: notice of the case and a meaningful opportunity to be heard before a neutral decision maker.

Substantive due process protects certain fundamental rights from government interference regardless of the procedures used. Laws burdening a fundamental right must survive strict scrutiny; other laws need only a rational basis.

The amount of process due is weighed against the private interest affected, the risk of erroneous deprivation, and the government's interest.""",
    ),
)


def documents_from_directory(directory: Path) -> list[SeedDocument]:
    """One SeedDocument per supported file; the title is the file stem."""
    if not directory.is_dir():
        raise FileNotFoundError(f"Seed directory not found: {directory}")

    documents = []
    for path in sorted(directory.iterdir()):
        if path.suffix.lower() not in SEED_FILE_SUFFIXES:
            continue
        documents.append(SeedDocument(
            title=path.stem.replace("_", " "),
            content=path.read_bytes(),
            filename=path.name,
        ))
    return documents


async def seed_knowledge_base(
    services: StudyServices,
    documents: Iterable[SeedDocument] = BUILT_IN_DOCUMENTS,
) -> list[IngestionResult]:
    """Ingest each document into the shared corpus; returns one result per document ingested."""
    results: list[IngestionResult] = []
    for document in documents:
        t0 = time.monotonic()
        try:
            result = await services.ingest(
                None, None, document.title, document.content,
                document_type=DocumentType.KNOWLEDGE_BASE,
                filename=document.filename,
            )
        except FirmRAGError as exc:
            logger.error(
                "Seed failed | title=%s category=%s error=%s",
                document.title, exc.category.value, exc,
            )
            continue

        results.append(result)
        logger.info(
            "Seeded | title=%s doc=%s status=%s chunks=%d elapsed_ms=%.0f",
            document.title, result.document_id, result.status.value,
            result.total_chunks, (time.monotonic() - t0) * 1000,
        )
    return results


async def _run(documents: list[SeedDocument]) -> int:
    services = build_services(get_settings())
    try:
        results = await seed_knowledge_base(services, documents)
    finally:
        await services.aclose()

    completed = sum(1 for r in results if r.status is DocumentStatus.COMPLETED)
    logger.info("Seeding done | documents=%d completed=%d", len(documents), completed)
    return 0 if completed == len(documents) else 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Seed the shared legal knowledge base")
    parser.add_argument(
        "--dir", type=Path, default=None,
        help="Directory of .txt/.pdf/.docx reference files to seed as well",
    )
    parser.add_argument(
        "--skip-built-in", action="store_true",
        help="Only seed files from --dir",
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="List the documents without ingesting them",
    )
    args = parser.parse_args(argv)

    configure_logging(get_settings())

    documents = [] if args.skip_built_in else list(BUILT_IN_DOCUMENTS)
    if args.dir is not None:
        documents.extend(documents_from_directory(args.dir))

    if not documents:
        logger.warning("Nothing to seed")
        return 0

    if args.dry_run:
        for document in documents:
            print(document.title)
        return 0

    return asyncio.run(_run(documents))


if __name__ == "__main__":
    raise SystemExit(main())
