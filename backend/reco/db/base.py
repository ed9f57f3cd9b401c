from sqlalchemy import MetaData
from sqlalchemy.orm import declarative_base

# index names match the ones created in the baseline migration
metadata = MetaData(naming_convention={"ix": "ix_%(column_0_label)s"})

Base = declarative_base(metadata=metadata)
