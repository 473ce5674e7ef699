# utils模块初始化
