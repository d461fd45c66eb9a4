"""Room Registry - appairage des tablettes de salle / classroom tablet pairing registry."""
