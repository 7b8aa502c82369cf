"""Constantes HTTP pour éviter les valeurs magiques dans le code.

Ce module définit les codes de statut HTTP utilisés par l'API documents, la passerelle de rate
limiting et le client de persistance.
"""

# Codes de statut HTTP courants
HTTP_OK = 200
HTTP_CREATED = 201
HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409
HTTP_UNPROCESSABLE_ENTITY = 422
HTTP_TOO_MANY_REQUESTS = 429
HTTP_INTERNAL_SERVER_ERROR = 500

# Fenêtres de rate limiting (secondes)
ONE_MINUTE = 60
FIFTEEN_MINUTES = 15 * 60
ONE_HOUR = 60 * 60
ONE_DAY = 24 * 60 * 60

LOGIN_PATH = "/login"
