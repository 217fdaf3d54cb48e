# -*- coding: utf-8 -*-
"""
@author yumu
@version 1.0.0
"""
from flask_sqlalchemy import SQLAlchemy

"""
竞猜托管账本统一使用 flask_sqlalchemy，整个 flask 上下文中只保留这一个 db 实例，
其他模块使用 db 时都从这里导入，在 create_app 中完成 db.init_app
"""
db = SQLAlchemy()
