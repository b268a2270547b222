# medintake/api/__init__.py
