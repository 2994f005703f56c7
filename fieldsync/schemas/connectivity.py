from pydantic import BaseModel


class ConnectivityUpdate(BaseModel):
    online: bool
