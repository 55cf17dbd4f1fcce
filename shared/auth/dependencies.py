"""Dependencies de autenticación para FastAPI"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Dict
from shared.auth.jwt_handler import verify_token


security = HTTPBearer()

STAFF_ROLES = ('scanner', 'organizer', 'admin')
ORGANIZER_ROLES = ('organizer', 'admin')


def _extract_role(payload: Dict) -> str:
    return payload.get('role') or payload.get('app_metadata', {}).get('role', 'user')


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Dict:
    '''Obtener usuario actual desde token JWT'''
    token = credentials.credentials
    payload = await verify_token(token)

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
        'role': _extract_role(payload)
    }


async def get_current_organizer(
    current_user: Dict = Depends(get_current_user)
) -> Dict:
    '''Verificar que el usuario sea organizer o admin'''
    role = current_user.get('role')
    if role not in ORGANIZER_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Acceso denegado. Requiere rol de organizer o admin, tu rol es: {role}"
        )
    return current_user


async def get_current_staff(
    current_user: Dict = Depends(get_current_user)
) -> Dict:
    '''Verificar que el usuario pueda hacer check-in (scanner, organizer o admin)'''
    if current_user.get('role') not in STAFF_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Se requieren permisos de scanner'
        )
    return current_user
