# services/sequence_service.py - Numérotation séquentielle des documents

import logging

from sqlalchemy.orm import Session

from db.models import DocumentSequence

logger = logging.getLogger(__name__)

PREFIXES = ("QT", "ORD", "SO", "INV")
NUMBER_WIDTH = 6


def ensure_sequences(db: Session) -> None:
    """Crée les compteurs manquants (appelé par init_db au démarrage)."""
    existing = {row.name for row in db.query(DocumentSequence).all()}
    for prefix in PREFIXES:
        if prefix not in existing:
            db.add(DocumentSequence(name=prefix, value=0))
    db.commit()


def next_number(db: Session, prefix: str) -> str:
    """
    Incrémente le compteur du type de document et renvoie le numéro formaté.

    Le compteur est verrouillé jusqu'à la fin de la transaction appelante, deux
    créations concurrentes ne peuvent donc pas obtenir le même numéro.

    Args:
        db: session de la transaction en cours
        prefix: QT | ORD | SO | INV

    Returns:
        str: ex. "INV000042"
    """
    if prefix not in PREFIXES:
        raise ValueError(f"Préfixe de séquence inconnu : {prefix}")

    sequence = (
        db.query(DocumentSequence)
        .filter(DocumentSequence.name == prefix)
        .with_for_update()
        .first()
    )
    if sequence is None:
        logger.warning(f"Compteur {prefix} absent, création à la volée")
        sequence = DocumentSequence(name=prefix, value=0)
        db.add(sequence)

    sequence.value += 1
    db.flush()
    return f"{prefix}{sequence.value:0{NUMBER_WIDTH}d}"
