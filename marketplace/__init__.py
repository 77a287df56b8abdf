"""
Marketplace de produits locaux: service de checkout (panier -> paiement -> commande).
"""
