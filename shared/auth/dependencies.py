"""Dependencies de autenticación para FastAPI"""
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Dict
from shared.auth.access import ScannerAccess
from shared.auth.jwt_handler import verify_token


security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Dict:
    '''Obtener usuario actual desde token JWT'''
    payload = await verify_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Token inválido o expirado',
            headers={'WWW-Authenticate': 'Bearer'},
        )

    user_id = payload.get('sub') or payload.get('user_id')
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Token inválido: falta user_id',
        )

    return {
        'user_id': str(user_id),
        'email': payload.get('email'),
        'role': payload.get('role') or payload.get('app_metadata', {}).get('role', 'user')
    }


def get_scanner_access(request: Request) -> ScannerAccess:
    '''Capacidad de acceso construida en el lifespan de la app'''
    access = getattr(request.app.state, 'scanner_access', None)
    if access is None:
        raise RuntimeError('ScannerAccess no inicializado. Revisar el arranque de la aplicación.')
    return access


async def get_current_scanner(
    current_user: Dict = Depends(get_current_user),
    access: ScannerAccess = Depends(get_scanner_access),
) -> Dict:
    '''Verificar que el usuario sea scanner o admin'''
    role = await access.role_for(current_user)
    if not await access.can_scan(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Se requieren permisos de scanner'
        )
    return {**current_user, 'role': role}
