# -*- coding: utf-8 -*-
"""
@author yumu
@version 1.0.0
"""
import json
import logging
import os

from quizledger.models.typings import ConfigOperationException

logger = logging.getLogger(__name__)

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))
CONFIG_FILE = os.environ.get("QUIZLEDGER_CONFIG", os.path.join(ROOT_DIR, "config.json"))


class Config:
    _instance = None

    @classmethod
    def _get_instance(cls, config_file=CONFIG_FILE):
        if cls._instance is None:
            cls._instance = cls.__new__(cls)
            cls._instance.config_file = config_file
            cls._instance.config = cls._instance.load_config()
        return cls._instance

    @classmethod
    def load_config(cls):
        """
        加载配置文件，文件不存在时返回空配置
        :return: 配置文件，json形式
        """
        instance = cls._get_instance()
        if not os.path.exists(instance.config_file):
            logger.warning("配置文件 %s 不存在，使用默认配置", instance.config_file)
            return {}
        try:
            with open(instance.config_file, 'r', encoding='utf-8') as file:
                return json.load(file)
        except (OSError, ValueError) as e:
            raise ConfigOperationException("读取配置文件出错" + ", ".join(str(arg) for arg in e.args))

    @classmethod
    def load_dict(cls, config, config_file=None):
        """
        直接用字典替换当前配置，测试和嵌入式启动时使用
        """
        instance = cls.__new__(cls)
        instance.config_file = config_file or CONFIG_FILE
        instance.config = dict(config)
        cls._instance = instance
        return instance

    @classmethod
    def get_value(cls, *args, default=None):
        """
        从配置文件中获取配置，针对多级key做了优化
        :param args: 指定的key，可以为多级
        :param default: key 不存在时的返回值
        :return: 获取到的值
        """
        value = cls._get_instance().config
        for key in args:
            if not isinstance(value, dict) or key not in value:
                return default
            value = value[key]
        return value
