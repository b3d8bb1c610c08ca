__version__ = "0.1.0"
__author__ = "yafo-ai"
__description__ = "SQLAlchemy 级联软删除、唯一约束处理与审计库"
