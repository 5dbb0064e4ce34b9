"""核心模块：配置、异常、步骤模型、运行作用域与步骤执行器"""
