# core/errors.py - Taxonomie des erreurs métier

from typing import Optional


class DomainError(Exception):
    """
    Erreur métier de base.

    Chaque sous-classe porte le code HTTP renvoyé par le gestionnaire
    d'exceptions de main.py. Le message est affiché tel quel côté interface.
    """
    status_code: int = 400

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(DomainError):
    """Entrée invalide (champ manquant, dates incohérentes, quantité < 1...)"""
    status_code = 400


class AuthenticationError(DomainError):
    status_code = 401


class AuthorizationError(DomainError):
    """Rôle ou propriété du document insuffisant"""
    status_code = 403


class NotFoundError(DomainError):
    status_code = 404


class ConflictError(DomainError):
    """Opération invalide dans l'état courant du document"""
    status_code = 400


class UnavailableError(DomainError):
    """Quantité demandée indisponible sur la période"""
    status_code = 400


class DependencyError(DomainError):
    """Échec d'un effet de bord optionnel (journalisé, jamais propagé au client)"""
    status_code = 500
