#!/usr/bin/env python3
"""Script para generar tokens JWT de prueba para operadores de puerta"""
import sys
import os
from datetime import timedelta

# Agregar directorio raíz al path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from shared.auth.jwt_handler import create_access_token


def generate_token(user_id: str, email: str = None, role: str = "scanner", hours: int = None):
    """Generar token JWT de operador"""
    data = {
        "sub": user_id,
        "email": email or f"{user_id}@example.com",
        "role": role,
    }
    expires = timedelta(hours=hours) if hours else None
    return create_access_token(data, expires_delta=expires)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Generar token JWT de prueba")
    parser.add_argument("--user-id", required=True, help="ID del operador")
    parser.add_argument("--email", help="Email del operador")
    parser.add_argument("--role", default="scanner", choices=["user", "admin", "scanner"], help="Rol del operador")
    parser.add_argument("--hours", type=int, help="Duración del token en horas (default: un turno)")

    args = parser.parse_args()

    token = generate_token(args.user_id, args.email, args.role, args.hours)
    print(f"\nToken generado:")
    print(token)
    print(f"\nPara usar en curl:")
    print(
        f'curl -X POST -H "Authorization: Bearer {token}" -H "Content-Type: application/json" '
        f'-d \'{{"payload": "TX-123"}}\' http://localhost:8000/api/v1/tickets/verify'
    )
    print()
