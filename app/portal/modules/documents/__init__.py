"""
Member documents.

PDFs (certificates, receipts, membership forms) are rendered on demand and stored
inline as base64 alongside their metadata. A document always belongs to one user and
is never edited after creation; the owner may delete it.
"""
