from . import crud_order
from . import crud_payment
from . import crud_user
