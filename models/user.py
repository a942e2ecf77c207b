# models/user.py - Projection de l'identité utilisateur (collaborateur externe)

from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.sql import func
from db.models import Base, new_id


class User(Base):
    """
    Utilisateur tel que consommé par le pipeline devis/commande/facture.

    L'inscription, la connexion et la réinitialisation de mot de passe sont
    gérées ailleurs ; seul le champ projeté est stocké ici :
    - name, email, company_name, gstin : affichage sur devis et factures
    - role : customer | vendor | admin (doit correspondre au claim JWT)
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    company_name = Column(String(255), nullable=True)
    gstin = Column(String(20), nullable=True)
    role = Column(String(20), nullable=False, default="customer", index=True)
    address = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role={self.role})>"
