"""Manejo de JWT tokens"""
from datetime import datetime, timedelta
from typing import Optional, Dict
from jose import JWTError, jwt
import logging
import os

from app.core.config import settings

logger = logging.getLogger(__name__)

JWT_SECRET_KEY = settings.JWT_SECRET_KEY
JWT_ALGORITHM = settings.JWT_ALGORITHM
JWT_ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv('JWT_ACCESS_TOKEN_EXPIRE_MINUTES', '720'))  # Turno completo de puerta


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    '''Crear token de acceso JWT'''
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({'exp': expire, 'type': 'access'})
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> Optional[Dict]:
    '''Decodificar y validar token JWT'''
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.debug(f'Token rechazado: {e}')
        return None


async def verify_token(token: str) -> Optional[Dict]:
    '''Verificar token de operador (ASYNC para mantener la firma de las dependencias)'''
    payload = decode_token(token)
    if payload is None:
        return None
    if payload.get('type', 'access') != 'access':
        return None
    return payload
