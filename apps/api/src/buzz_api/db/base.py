from sqlalchemy.orm import DeclarativeBase, declared_attr


class Base(DeclarativeBase):
    """Declarative base; tables default to the lower-cased class name."""

    @declared_attr.directive
    def __tablename__(cls) -> str:  # noqa: N805
        return cls.__name__.lower()


# Register every model on Base.metadata for create_all and Alembic autogenerate
import buzz_api.models  # noqa: E402,F401
